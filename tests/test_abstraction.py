"""
Abstraction discovery on small hand-made instances.
"""

import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from arc_synth.abstraction import Abstraction, make_type_discriminator
from arc_synth.grid import Grid
from arc_synth.images import MonochromeColor, basic_image
from arc_synth.types import Color


def grid(rows):
    return Grid.from_list(rows)


def instance(rows, color, mono_rows):
    return Abstraction('shape', [basic_image(grid(rows)), MonochromeColor(color, basic_image(grid(mono_rows)))])


# ==============================================================================
# Discovery
# ==============================================================================

def test_type_discriminator():
    abstraction = instance([[1]], Color.red, [[1, 1]])
    abstraction.sub_images_to_classify = list(abstraction.sub_images)
    is_mono = make_type_discriminator('MonochromeColor<BasicImage>')
    assert not is_mono(abstraction, (0,))
    assert is_mono(abstraction, (1,))


def test_discovery_classifies_every_sub_image():
    """
    Test: discovery ends with nothing left to classify.

    Setup:
    - Two instances holding one BasicImage and one MonochromeColor each

    Verify:
    - Each instance has two parts and an empty sub_images_to_classify
    """
    images = [
        instance([[1]], Color.red, [[1, 1]]),
        instance([[3, 3]], Color.green, [[1], [1]]),
    ]
    flesh = Abstraction.discover_abstractions(images)
    assert flesh is not None
    for image in images:
        assert len(image.parts) == 2
        assert image.sub_images_to_classify == []
        assert image.parts[0].get_type() == 'BasicImage'


def test_mismatched_instances_are_not_abstracted():
    images = [
        instance([[1]], Color.red, [[1, 1]]),
        Abstraction('shape', [basic_image(grid([[1]]))]),
    ]
    assert Abstraction.discover_abstractions(images) is None


def test_nothing_to_discover():
    assert Abstraction.discover_abstractions([basic_image(grid([[1]]))]) is None


def test_clone_keeps_key():
    abstraction = instance([[1]], Color.red, [[1, 1]])
    assert abstraction.clone().key == abstraction.key
    assert abstraction.get_type() == 'Abstraction<shape>'
