"""PixelUpia SR - Offline Processing Tools"""

from .batch_enhancer import BatchEnhancer, BatchEnhancerConfig, build_parser, main

__all__ = [
    'BatchEnhancer',
    'BatchEnhancerConfig',
    'build_parser',
    'main',
]
__version__ = '1.0.0'
