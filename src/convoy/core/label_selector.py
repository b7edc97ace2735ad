"""
Label Selector - Compiles source/target technology filters into a rule
selection expression.

Expressions are built as an immutable tree (predicate, NOT, AND, OR and
explicit parenthesized groups) and rendered to a string in one place,
render(). `&&` binds tighter than `||`; OR groups are always parenthesized
so the downstream selector parser never has to guess.

Grammar produced by LabelSelectorBuilder.build():

    targets and sources   ((target=a || ...) && (source=b || ...)) || (discovery)
    targets only          (target=a && source) || (discovery)
    sources only          (source=b || ...) || (discovery)
    neither               <empty: no filtering>
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union

import structlog


SOURCE_LABEL = "source"
TARGET_LABEL = "target"
DEP_SOURCE_LABEL = "dep-source"
OPEN_SOURCE_VALUE = "open-source"
DEFAULT_LABELS = ("discovery",)


@dataclass(frozen=True)
class LabelPredicate:
    """`key=value` equality, or bare `key` existence when value is None"""
    key: str
    value: Optional[str] = None


@dataclass(frozen=True)
class Not:
    operand: "LabelExpression"


@dataclass(frozen=True)
class And:
    operands: Tuple["LabelExpression", ...]


@dataclass(frozen=True)
class Or:
    operands: Tuple["LabelExpression", ...]


@dataclass(frozen=True)
class Group:
    """Explicit parentheses around an expression"""
    operand: "LabelExpression"


LabelExpression = Union[LabelPredicate, Not, And, Or, Group]


def render(expression: Optional[LabelExpression]) -> str:
    """
    Render an expression tree to its selector string.

    Args:
        expression: Expression tree (None renders as the empty selector)

    Returns:
        Selector string
    """
    if expression is None:
        return ""
    if isinstance(expression, LabelPredicate):
        if expression.value is None:
            return expression.key
        return f"{expression.key}={expression.value}"
    if isinstance(expression, Not):
        return f"!{render(expression.operand)}"
    if isinstance(expression, And):
        return " && ".join(render(operand) for operand in expression.operands)
    if isinstance(expression, Or):
        return " || ".join(render(operand) for operand in expression.operands)
    if isinstance(expression, Group):
        return f"({render(expression.operand)})"
    raise TypeError(f"Not a label expression: {expression!r}")


def _unique(values: Optional[Iterable[str]]) -> List[str]:
    # First occurrence order
    return list(dict.fromkeys(v for v in (values or []) if v))


class LabelSelectorBuilder:
    """
    Synthesizes the rule label selector from source/target technologies.

    Example:
        >>> builder = LabelSelectorBuilder()
        >>> builder.selector(targets=["cloud-readiness"], sources=["eap7"])
        '((target=cloud-readiness) && (source=eap7)) || (discovery)'
    """

    def __init__(
        self,
        source_label: str = SOURCE_LABEL,
        target_label: str = TARGET_LABEL,
        default_labels: Iterable[str] = DEFAULT_LABELS,
    ):
        """
        Initialize the builder.

        Args:
            source_label: Label key carrying source technologies
            target_label: Label key carrying target technologies
            default_labels: Labels always OR'd in once any filter is requested
        """
        self.source_label = source_label
        self.target_label = target_label
        self.default_labels = tuple(default_labels)

        self.logger = structlog.get_logger(__name__)

    def build(
        self,
        targets: Optional[Iterable[str]] = None,
        sources: Optional[Iterable[str]] = None,
    ) -> Optional[LabelExpression]:
        """
        Build the selector expression tree.

        Args:
            targets: Target technology values
            sources: Source technology values

        Returns:
            Expression tree, or None when no filtering applies at all
        """
        targets = _unique(targets)
        sources = _unique(sources)

        if not targets and not sources:
            return None

        defaults = Group(Or(tuple(LabelPredicate(label) for label in self.default_labels)))
        target_expr = self._any_of(self.target_label, targets)
        source_expr = self._any_of(self.source_label, sources)

        if target_expr and source_expr:
            return Or((Group(And((Group(target_expr), Group(source_expr)))), defaults))

        if target_expr:
            # Bare source existence keeps rules without an explicit source value
            if len(targets) > 1:
                target_expr = Group(target_expr)
            return Or((Group(And((target_expr, LabelPredicate(self.source_label)))), defaults))

        return Or((Group(source_expr), defaults))

    def selector(
        self,
        targets: Optional[Iterable[str]] = None,
        sources: Optional[Iterable[str]] = None,
    ) -> str:
        """
        Build and render the selector string.

        Returns:
            Selector string ("" means every rule is eligible)
        """
        selector = render(self.build(targets=targets, sources=sources))
        self.logger.debug("label_selector_built", selector=selector)
        return selector

    def dependency_selector(
        self,
        analyze_known_libraries: bool = False,
        dep_source_label: str = DEP_SOURCE_LABEL,
    ) -> str:
        """
        Build the dependency label selector.

        Known open-source libraries are excluded from analysis unless
        explicitly requested.

        Args:
            analyze_known_libraries: Keep open-source libraries in scope
            dep_source_label: Label key carrying the dependency source

        Returns:
            Selector string ("" when nothing is excluded)
        """
        if analyze_known_libraries:
            return ""
        return render(Group(Not(LabelPredicate(dep_source_label, OPEN_SOURCE_VALUE))))

    def _any_of(self, key: str, values: List[str]) -> Optional[LabelExpression]:
        if not values:
            return None
        return Or(tuple(LabelPredicate(key, value) for value in values))
