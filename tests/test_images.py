"""
Structured images: rendering, keys, types and feature batches.
"""

import sys
import os

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from arc_synth.errors import ArcSynthError, SolverError
from arc_synth.grid import Grid
from arc_synth.images import (
    Alternatives, BackgroundColor, ImageData, ImageTransformation, ImageWindow, MonochromeColor,
    Pixel, Scale, SemanticBox, SolidColor, SubImages, Translation, basic_image, make_image_window,
)
from arc_synth.types import Color, Transform
from arc_synth.config import MAX_SUB_IMAGES


def grid(rows):
    return Grid.from_list(rows)


# ==============================================================================
# Rendering
# ==============================================================================

def test_basic_image_round_trip():
    g = grid([[1, 2, 3], [4, 5, 6]])
    image = basic_image(g)
    assert image.to_grid().equals(g)
    assert image.width == 3 and image.height == 2 and image.area == 6


@pytest.mark.parametrize("transform,expected", [
    (Transform.flip_x, [[2, 1], [4, 3]]),
    (Transform.flip_y, [[3, 4], [1, 2]]),
    (Transform.rotate_180, [[4, 3], [2, 1]]),
    (Transform.transpose, [[1, 3], [2, 4]]),
])
def test_finite_transforms(transform, expected):
    image = ImageTransformation(transform, basic_image(grid([[1, 2], [3, 4]])))
    assert image.to_grid().to_list() == expected


def test_monochrome_and_background():
    image = basic_image(grid([[0, 2], [3, 0]]))
    assert MonochromeColor(Color.teal, image).to_grid().to_list() == [[0, 8], [8, 0]]
    assert BackgroundColor(Color.grey, image).to_grid().to_list() == [[5, 2], [3, 5]]


def test_scale():
    image = Scale(2, basic_image(grid([[1, 2]])))
    assert image.to_grid().to_list() == [[1, 1, 2, 2], [1, 1, 2, 2]]


def test_scale_with_grid_lines():
    image = Scale(1, basic_image(grid([[1, 2]])), Color.grey)
    assert image.to_grid().to_list() == [[1, 5, 2]]


def test_translation_and_window():
    pixel = Translation(1, 0, basic_image(grid([[3]])))
    window = ImageWindow(0, 0, 3, 1, pixel)
    assert window.to_grid().to_list() == [[0, 3, 0]]


def test_sub_images_first_non_black_wins():
    a = basic_image(grid([[1, 0]]))
    b = basic_image(grid([[2, 2]]))
    assert SubImages([a, b], 'free').to_grid().to_list() == [[1, 2]]


def test_sub_images_xor_and():
    a = basic_image(grid([[1, 1, 0]]))
    b = basic_image(grid([[2, 0, 2]]))
    c = basic_image(grid([[1, 0, 2]]))
    assert SubImages([a, b], 'xor').to_grid().to_list() == [[0, 1, 2]]
    assert SubImages([a, b], 'and').to_grid().to_list() == [[0, 0, 0]]
    assert SubImages([a, c], 'and').to_grid().to_list() == [[1, 0, 0]]


def test_sub_images_xor_and_with_three_children():
    """
    Test: overlaps of three children.

    Verify:
    - 'xor' paints nothing where two or more children are set
    - 'and' paints only where all children agree on the color
    """
    pixels = [basic_image(grid([[color]])) for color in (2, 3, 4)]
    assert SubImages(pixels, 'xor').to_grid().to_list() == [[0]], "Three children overlap"
    assert SubImages(pixels[:2], 'and').to_grid().to_list() == [[0]], "Colors disagree"

    a = basic_image(grid([[5, 0, 0]]))
    b = basic_image(grid([[5, 6, 0]]))
    c = basic_image(grid([[5, 0, 7]]))
    assert SubImages([a, b, c], 'xor').to_grid().to_list() == [[0, 6, 7]]
    assert SubImages([a, b, c], 'and').to_grid().to_list() == [[5, 0, 0]]


def test_semantic_box():
    box = SemanticBox(4, 3, [1, 2, 1, 3, 0, 3, 1, 2, 1])
    assert box.to_grid().to_list() == [[1, 2, 2, 1], [3, 0, 0, 3], [1, 2, 2, 1]]
    assert box.c4 == 0


def test_unbounded_image_cannot_rasterize():
    with pytest.raises(ArcSynthError):
        SolidColor(Color.red).to_grid()


def test_window_over_solid_color():
    image = make_image_window(Translation(0, 0, basic_image(grid([[1, 1]]))))
    assert image.width == 2 and image.height == 1
    assert ImageWindow(0, 0, 2, 2, SolidColor(Color.red)).to_grid().to_list() == [[2, 2], [2, 2]]


def test_pixel():
    assert ImageWindow(-0.5, -0.5, 0.5, 0.5, Pixel(Color.green)).to_grid().to_list() == [[3]]


# ==============================================================================
# Keys and types
# ==============================================================================

def test_sub_images_key_ignores_order():
    a = basic_image(grid([[1]]))
    b = basic_image(grid([[2]]))
    assert SubImages([a, b], 'free').key == SubImages([b, a], 'free').key


def test_types_nest():
    image = SubImages([MonochromeColor(1, basic_image(grid([[1]])))], 'free')
    assert image.get_type() == 'Subimages<MonochromeColor<BasicImage>,free>'
    assert SubImages([basic_image(grid([[1]]))], 3, fixed_size=True).get_type() == \
        'Subimages<BasicImage,number,fixed_size>'


def test_clone_is_deep():
    image = ImageData([1, 2], basic_image(grid([[1]])))
    clone = image.clone()
    assert clone.key == image.key
    assert clone.image is not image.image


def test_too_many_sub_images():
    images = [basic_image(grid([[1]])) for _ in range(MAX_SUB_IMAGES + 1)]
    with pytest.raises(SolverError):
        SubImages(images, 'free')


def test_recur_images():
    leaf = basic_image(grid([[1]]))
    tree = Alternatives([MonochromeColor(2, leaf)])
    types = [image.get_type() for image in tree.recur_images()]
    assert types == ['Alternatives<MonochromeColor<BasicImage>>', 'MonochromeColor<BasicImage>', 'BasicImage']


# ==============================================================================
# Features
# ==============================================================================

def test_basic_image_features():
    image = basic_image(grid([[0, 1, 0], [1, 0, 1], [0, 1, 0]]))
    values = {f.name: f(image) for f in image.number_functions()}
    assert values['area'] == 9
    assert values['non_black'] == 4
    assert values['nb_colors'] == 2
    assert values['symmetrical_x'] == 1
    assert values['blue'] == 4
    assert values['holes_count'] == 1


def test_wrapper_features_are_prefixed():
    image = MonochromeColor(Color.red, basic_image(grid([[1]])))
    paths = [f.path for f in image.color_functions()]
    assert paths == ['@color']
    assert '@image.area' in [f.path for f in image.number_functions()]


def test_alternatives_features_are_prefixed():
    image = Alternatives([Pixel(3)])
    functions = image.color_functions()
    assert [f.path for f in functions] == ['@alternatives[0].color']
    assert functions[0](image) == 3


def test_failed_alternative_keeps_its_position():
    """
    Test: an alternative that failed to decompose is held as None.

    Verify:
    - Wrappers that clone, translate or compile the node skip it
    - Features of the surviving branch keep their index
    """
    image = Alternatives([None, basic_image(grid([[1, 2]]))])
    moved = Translation(1, 0, image.translate(-1, 0))
    assert moved.to_grid().to_list() == [[1, 2]]
    assert image.clone().alternatives[0] is None
    assert [f.path for f in image.grid_functions()] == ['@alternatives[1].grid']
    assert [i.get_type() for i in image.images()] == ['BasicImage']
    assert image.key == 'Alternatives([none,' + image.alternatives[1].key + '])'

    with pytest.raises(ArcSynthError):
        Alternatives([None]).compile()


def test_sub_images_functions():
    image = SubImages([basic_image(grid([[1]]))], 'free')
    assert [f.path for f in image.sub_images_functions()] == ['@list']
    assert [f.path for f in image.number_functions()] == ['@count']
