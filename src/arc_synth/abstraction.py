"""
Abstraction discovery.

An Abstraction is a named group of sub-images. Discovery learns, from every
instance of the same name across a puzzle, an ordered list of parts: each
part is picked out of the remaining sub-images by a boolean selector, and is
rebuilt from the parts before it plus a few free arguments. Once every
sub-image is explained, the abstraction can be regenerated from its
arguments alone.
"""

import logging
from collections import OrderedDict
from typing import Callable, Dict, List, Optional

from .config import ABSTRACTION_MAX_RETRIES, SolverOptions
from .core.solver import Solver, SubFunctions
from .errors import (
    ArcSynthError, CantBuildColorFunction, CantBuildGridFunction, CantBuildNumberFunction, SolverTimeout,
)
from .functions import F, Attr, Call, Generation, ROOT
from .images.base import ConcreteImage, ImageBuilder, ImageCompilation
from .images.wrappers import Translation
from .types import Color

logger = logging.getLogger(__name__)

Flesh = Callable[['Abstraction'], bool]


def _group_by_type(images: List[ConcreteImage]) -> Dict[str, List[ConcreteImage]]:
    groups: Dict[str, List[ConcreteImage]] = OrderedDict()
    for image in images:
        groups.setdefault(image.get_type(), []).append(image)
    return groups


def make_type_discriminator(type: str) -> F:
    """True when the sub-image to classify at i0 has the given type."""
    get_type = F('sub_images_to_classify[i0].get_type()',
                 Call(Generation(Attr(ROOT, 'sub_images_to_classify'), 0), 'get_type'))
    return F.equals(get_type, type)


class Abstraction(ConcreteImage):
    """
    Named group of sub-images with learned parts.

    While black_box is set the abstraction only exposes its arguments; once
    parts are known it also exposes their features under `parts[i]`.
    """

    def __init__(self, name: str, sub_images: List[ConcreteImage]):
        self.name = name
        self.sub_images = list(sub_images)
        self.black_box = False

        self.number_arguments: List = []
        self.color_arguments: List = []
        self.grid_arguments: List = []
        self.build_parts: Optional[Callable[['Abstraction'], None]] = None

        self.get_number_arguments: List[F] = []
        self.get_color_arguments: List[F] = []
        self.get_grid_arguments: List[F] = []

        self.parts: List[ConcreteImage] = []
        self.parts_selector: List[F] = []
        self.sub_images_to_classify: List[ConcreteImage] = []

        self.solver_options = SolverOptions(no_mapping=True, no_decision_tree=True)

    # ==========================================================================
    # Image protocol
    # ==========================================================================

    @property
    def key(self) -> str:
        return f"Abstraction<{self.name}>([{','.join(image.key for image in self.sub_images)}])"

    def get_type(self) -> str:
        return f"Abstraction<{self.name}>"

    def clone(self) -> 'Abstraction':
        flesh = self.make_flesh_abstraction()
        clone = Abstraction(self.name, [sub_image.clone() for sub_image in self.sub_images])
        flesh(clone)
        return clone

    def translate(self, dx, dy) -> ConcreteImage:
        if self.build_parts is not None:
            return Translation(dx, dy, self.clone())
        return Abstraction(self.name, [sub_image.translate(dx, dy) for sub_image in self.sub_images])

    def compile(self) -> ImageCompilation:
        children = [sub_image.compile() for sub_image in self.sub_images]
        x0 = min((c.x0 for c in children), default=0)
        x1 = max((c.x1 for c in children), default=0)
        y0 = min((c.y0 for c in children), default=0)
        y1 = max((c.y1 for c in children), default=0)

        def at(x, y):
            for child in children:
                if child.contains(x, y):
                    color = child.at(x, y)
                    if color != Color.black:
                        return color
            return Color.black

        return ImageCompilation(x0, y0, x1, y1, at)

    def _parts_functions(self, method: str) -> List[F]:
        if self.black_box:
            return []
        result = []
        for i, part in enumerate(self.parts):
            result.extend(f.prefix_list('parts', i) for f in getattr(part, method)())
        return result

    def number_functions(self) -> List[F]:
        arguments = [F.make('number_arguments', index=i) for i in range(len(self.number_arguments))]
        return arguments + self._parts_functions('number_functions')

    def color_functions(self) -> List[F]:
        arguments = [F.make('color_arguments', index=i) for i in range(len(self.color_arguments))]
        return arguments + self._parts_functions('color_functions')

    def grid_functions(self) -> List[F]:
        arguments = [F.make('grid_arguments', index=i) for i in range(len(self.grid_arguments))]
        return arguments + self._parts_functions('grid_functions')

    def grids(self):
        for sub_image in self.sub_images:
            yield from sub_image.grids()

    def images(self):
        yield from self.sub_images

    # ==========================================================================
    # Parts
    # ==========================================================================

    def make_flesh_abstraction(self, select_parts: bool = True) -> Flesh:
        """
        Snapshot of the learned parts and argument getters.

        The returned function copies them onto another instance of the same
        abstraction and, unless select_parts is False, classifies its
        sub-images; it returns False when classification fails.
        """
        build_parts = self.build_parts
        get_number_arguments = list(self.get_number_arguments)
        get_color_arguments = list(self.get_color_arguments)
        get_grid_arguments = list(self.get_grid_arguments)
        parts_selector = list(self.parts_selector)
        black_box = self.black_box

        def flesh(abstraction: 'Abstraction') -> bool:
            abstraction.black_box = black_box
            abstraction.build_parts = build_parts
            abstraction.get_number_arguments = list(get_number_arguments)
            abstraction.get_color_arguments = list(get_color_arguments)
            abstraction.get_grid_arguments = list(get_grid_arguments)
            abstraction.parts_selector = list(parts_selector)
            return not select_parts or abstraction.select_parts()

        return flesh

    def _evaluate_arguments(self, getters: List[F]) -> List:
        values = []
        for getter in getters:
            try:
                values.append(getter(self))
            except SolverTimeout:
                raise
            except ArcSynthError as e:
                logger.debug('Argument %s unavailable: %s', getter.path, e)
                values.append(None)
        return values

    def get_arguments(self) -> None:
        self.number_arguments = self._evaluate_arguments(self.get_number_arguments)
        self.color_arguments = self._evaluate_arguments(self.get_color_arguments)
        self.grid_arguments = self._evaluate_arguments(self.get_grid_arguments)

    def _selects(self, selector: F, index: int) -> bool:
        try:
            return bool(selector(self, (index,)))
        except SolverTimeout:
            raise
        except ArcSynthError as e:
            logger.debug('Selector %s failed: %s', selector.path, e)
            return False

    def select_parts(self) -> bool:
        """Pick each part with its selector; every selector must match exactly one sub-image."""
        self.parts = []
        self.sub_images_to_classify = list(self.sub_images)
        for selector in self.parts_selector:
            selected = [sub_image for index, sub_image in enumerate(self.sub_images_to_classify)
                        if self._selects(selector, index)]
            if len(selected) != 1:
                logger.debug('select_parts failed: %d matches for %s', len(selected), selector.path)
                return False
            part = selected[0]
            self.parts.append(part)
            self.get_arguments()
            self.sub_images_to_classify = [sub_image for sub_image in self.sub_images_to_classify
                                           if sub_image is not part]
        return True

    def build(self) -> None:
        if self.build_parts is not None:
            self.build_parts(self)

    def build_solver_function(self, solver: Solver, path: F) -> ImageBuilder:
        """Rebuild from the arguments alone, regenerating the parts."""
        logger.debug('Abstraction.build_solver_function %s', path.path)
        number_builders = [solver.build_number_function(F.make('number_arguments', index=i).prefix(path))
                           for i in range(len(self.number_arguments))]
        color_builders = [solver.build_color_function(F.make('color_arguments', index=i).prefix(path))
                          for i in range(len(self.color_arguments))]
        grid_builders = [solver.build_grid_function(F.make('grid_arguments', index=i).prefix(path))
                         for i in range(len(self.grid_arguments))]
        flesh = self.make_flesh_abstraction(select_parts=False)
        name = self.name

        def build(image, indices=()):
            abstraction = Abstraction(name, [])
            abstraction.set_builders({
                'number_arguments': [f.path for f in number_builders],
                'color_arguments': [f.path for f in color_builders],
                'grid_arguments': [f.path for f in grid_builders],
            })
            flesh(abstraction)
            abstraction.number_arguments = [f(image, indices) for f in number_builders]
            abstraction.color_arguments = [f(image, indices) for f in color_builders]
            abstraction.grid_arguments = [f(image, indices) for f in grid_builders]
            abstraction.build()
            abstraction.sub_images = list(abstraction.parts)
            return abstraction

        return build

    # ==========================================================================
    # Discovery
    # ==========================================================================

    def _flesh_all(self, flesh: Flesh, abstractions: List['Abstraction']) -> bool:
        for abstraction in abstractions:
            if not flesh(abstraction):
                return False
        return True

    def add_part(self, part_selector: F, input_abstractions: List['Abstraction'],
                 output_abstractions: List['Abstraction']) -> bool:
        """
        Learn how to rebuild the part picked by part_selector.

        Each time the part needs a value the other parts cannot provide, the
        value is exposed as a new argument and the fit is retried.

        Returns:
            True when the part can be rebuilt
        """
        generic_input = self.clone()
        generic_input.black_box = False
        self.black_box = False

        part_index = len(self.parts_selector)
        self.parts_selector.append(part_selector)

        for _ in range(ABSTRACTION_MAX_RETRIES):
            input_flesh = generic_input.make_flesh_abstraction()
            output_flesh = self.make_flesh_abstraction()

            if not output_flesh(self):
                logger.debug('add_part: selection failed on the model')
                return False
            if not self._flesh_all(input_flesh, input_abstractions):
                logger.debug('add_part: selection failed on an input')
                return False
            if not self._flesh_all(output_flesh, output_abstractions):
                logger.debug('add_part: selection failed on an output')
                return False

            for input_abstraction, output_abstraction in zip(input_abstractions, output_abstractions):
                input_abstraction.number_arguments = list(output_abstraction.number_arguments)
                input_abstraction.color_arguments = list(output_abstraction.color_arguments)
                input_abstraction.grid_arguments = list(output_abstraction.grid_arguments)

            try:
                solver = Solver.make(input_abstractions, output_abstractions, self.solver_options)
                part_builder = self.parts[part_index].build_solver_function(
                    solver, F.make('parts', index=part_index))
            except CantBuildNumberFunction as e:
                self.get_number_arguments.append(e.function)
                continue
            except CantBuildColorFunction as e:
                self.get_color_arguments.append(e.function)
                continue
            except CantBuildGridFunction as e:
                self.get_grid_arguments.append(e.function)
                continue
            except SolverTimeout:
                raise
            except ArcSynthError as e:
                logger.debug('add_part failed: %s', e)
                return False

            previous_build_parts = self.build_parts

            def build_parts(abstraction: 'Abstraction', previous=previous_build_parts, builder=part_builder):
                if previous is not None:
                    previous(abstraction)
                abstraction.parts.append(builder(abstraction))

            self.build_parts = build_parts
            return True

        return False

    def abstract_new_part(self, input_abstractions: List['Abstraction'],
                          output_abstractions: List['Abstraction']) -> bool:
        """
        Add one part. A type met only once among the unclassified sub-images
        is selected by type alone; otherwise a selector is searched among the
        sub-images of the first type.
        """
        self.black_box = False
        flesh = self.make_flesh_abstraction()
        if not flesh(self) or not self._flesh_all(flesh, input_abstractions) or \
                not self._flesh_all(flesh, output_abstractions):
            return False
        if not self.sub_images_to_classify:
            return False

        groups = _group_by_type(self.sub_images_to_classify)
        for type, members in groups.items():
            if len(members) == 1:
                return self.add_part(make_type_discriminator(type), input_abstractions, output_abstractions)

        for type, members in groups.items():
            is_right_type = make_type_discriminator(type)
            to_classify = F.make('sub_images_to_classify')
            try:
                solver = Solver.make(input_abstractions, output_abstractions, self.solver_options)
                sub_functions = SubFunctions(
                    length_function=to_classify.length(),
                    index_function=F.index(0),
                    sub_images_functions=[],
                    number_functions=[f.prefix_generation(to_classify, 0) for f in members[0].number_functions()],
                    color_functions=[f.prefix_generation(to_classify, 0) for f in members[0].color_functions()],
                    grid_functions=[solver.raise_grid_number_function(f).prefix_generation(to_classify, 0)
                                    for f in members[0].grid_functions()],
                )
                mapping = solver.make_sub_solver(sub_functions, is_right_type)
            except SolverTimeout:
                raise
            except ArcSynthError as e:
                logger.debug('abstract_new_part: no sub-solver for %s: %s', type, e)
                return False
            if mapping is not None:
                for part_selector in mapping.sub_solver.enum_boolean_selectors():
                    logger.debug('Part selector found: %s', part_selector.path)
                    return self.add_part(F.and_(is_right_type, part_selector), input_abstractions,
                                         output_abstractions)
            return False
        return False

    def check_potential_abstraction(self, abstractions: List['Abstraction']) -> bool:
        """Every instance holds as many sub-images of each type as this one."""
        groups = _group_by_type(self.sub_images)
        for abstraction in abstractions:
            for type, members in groups.items():
                if sum(1 for s in abstraction.sub_images if s.get_type() == type) != len(members):
                    return False
        return True

    def abstract_all_parts(self, abstractions: List['Abstraction']) -> bool:
        """
        Learn parts until every sub-image of every instance is classified.

        Each successful step classifies one more sub-image, so the loop ends
        after at most len(sub_images) parts.
        """
        if not self.check_potential_abstraction(abstractions):
            logger.debug('Abstraction %s: instances differ in shape', self.name)
            return False

        input_abstractions = abstractions
        output_abstractions = [abstraction.clone() for abstraction in abstractions]

        for _ in range(len(self.sub_images)):
            if not self.abstract_new_part(input_abstractions, output_abstractions):
                break
            logger.debug('Abstraction %s: %d parts', self.name, len(self.parts_selector))

        self.black_box = False
        flesh = self.make_flesh_abstraction()
        if not flesh(self) or not self._flesh_all(flesh, input_abstractions) or \
                not self._flesh_all(flesh, output_abstractions):
            return False

        classified = all(not abstraction.sub_images_to_classify for abstraction in input_abstractions)
        if not classified:
            logger.debug('Abstraction %s: sub-images left unclassified', self.name)
        return classified

    @staticmethod
    def discover_abstractions(images: List[ConcreteImage]) -> Optional[Callable[[ConcreteImage], None]]:
        """
        Learn every abstraction found in images and flesh them in place.

        Returns:
            Function fleshing the learned abstractions of another image, or
            None when nothing was learned
        """
        instances: Dict[str, List[Abstraction]] = OrderedDict()
        for image in images:
            for sub_image in image.recur_images():
                if isinstance(sub_image, Abstraction):
                    instances.setdefault(sub_image.name, []).append(sub_image.clone())

        fleshers = []
        for name, abstraction_list in instances.items():
            model = abstraction_list[0].clone()
            if not model.abstract_all_parts(abstraction_list):
                logger.info('Abstraction %s not discovered', name)
                continue
            logger.info('Abstraction %s discovered with %d parts', name, len(model.parts_selector))
            flesh = model.make_flesh_abstraction()

            def flesh_image(image: ConcreteImage, name=name, flesh=flesh) -> None:
                for sub_image in image.recur_images():
                    if isinstance(sub_image, Abstraction) and sub_image.name == name:
                        flesh(sub_image)

            for image in images:
                flesh_image(image)
            fleshers.append(flesh_image)

        if not fleshers:
            return None

        def flesh_all(image: ConcreteImage) -> None:
            for flesh_image in fleshers:
                flesh_image(image)

        return flesh_all
