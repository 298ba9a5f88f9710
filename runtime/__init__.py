"""PixelUpia SR - Runtime Backends"""
