"""PixelUpia SR - HTTP API"""
