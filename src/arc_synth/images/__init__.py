"""
Structured image variants.
"""

from .base import ImageCompilation, SymbolicImage, ConcreteImage, WrapperImage, ImageBuilder
from .leaves import BasicImage, SemanticBox, BackgroundPixel, Pixel, SolidColor, Procedural, basic_image
from .wrappers import (
    MonochromeColor, BackgroundColor, ImageData, ImageWindow, Scale, Translation,
    ImageTransformation, Concentric, Info,
)
from .composite import (
    SubImages, Alternatives, translate, set_background, make_object_list, make_rotation, make_image_window,
)

__all__ = [
    'ImageCompilation', 'SymbolicImage', 'ConcreteImage', 'WrapperImage', 'ImageBuilder',
    'BasicImage', 'SemanticBox', 'BackgroundPixel', 'Pixel', 'SolidColor', 'Procedural', 'basic_image',
    'MonochromeColor', 'BackgroundColor', 'ImageData', 'ImageWindow', 'Scale', 'Translation',
    'ImageTransformation', 'Concentric', 'Info',
    'SubImages', 'Alternatives', 'translate', 'set_background', 'make_object_list', 'make_rotation',
    'make_image_window',
]
