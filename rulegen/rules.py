"""
Rule file reader and rule splitter.

Rule file format (.rules):
    // Comments run from // to end of line
    (Add x x) -> (Mul x (Const [2]))
    (Sub x y) -> (Add x (Neg y))
    (Lsh x (Const [c])) && c < 64 -> (Mul x (Const [{2 ** c}]))

Each rule is one line:

    <match> [&& <condition>] -> <result>

The condition is a chunk of target code evaluated as a boolean. It may
use variables bound by <match>; "v" is the term matched by the whole rule.

Rules are grouped by the operator of their match expression. Within a
group, the first rule in file order that matches wins.

Note: comment stripping does not know about string literals, so a "//"
inside a {code} fragment truncates the line. Inside patterns, < and >
count as brackets even within {code}; comparisons belong in the condition.
"""

import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union

from .errors import MalformedExpression, MalformedRule, RuleSourceError
from .patterns import Pattern, format_pattern, parse_pattern

logger = logging.getLogger(__name__)

COMMENT = "//"
ARROW = "->"
CONJUNCTION = "&&"


class RuleLine:
    """One raw rule as it appeared in the source."""

    __slots__ = ('text', 'lineno')

    def __init__(self, text: str, lineno: Optional[int] = None):
        self.text = text
        self.lineno = lineno

    def __eq__(self, other):
        if isinstance(other, RuleLine):
            return self.text == other.text and self.lineno == other.lineno
        return False

    def __repr__(self) -> str:
        if self.lineno is None:
            return f"RuleLine({self.text!r})"
        return f"RuleLine({self.text!r}, line {self.lineno})"


class Rule:
    """
    A split and parsed rule: match pattern, optional condition, result.

    The condition is kept as opaque target code ("" means no guard).
    """

    __slots__ = ('match', 'cond', 'result', 'text', 'lineno')

    def __init__(self, match: Pattern, cond: str, result: Pattern,
                 text: str = "", lineno: Optional[int] = None):
        self.match = match
        self.cond = cond
        self.result = result
        self.text = text
        self.lineno = lineno

    def __repr__(self) -> str:
        base = f"{format_pattern(self.match)}"
        if self.cond:
            base += f" && {self.cond}"
        return f"Rule({base} -> {format_pattern(self.result)})"


class RuleGroup:
    """All rules whose match expression has the same operator, in file order."""

    __slots__ = ('_tag', '_rules')

    def __init__(self, tag: str, rules):
        self._tag = tag
        self._rules = tuple(rules)

    @property
    def tag(self) -> str:
        return self._tag

    @property
    def rules(self) -> Tuple[RuleLine, ...]:
        return self._rules

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self) -> Iterator[RuleLine]:
        return iter(self._rules)

    def __repr__(self) -> str:
        return f"RuleGroup({self._tag!r}, {len(self._rules)} rules)"


class RuleSet:
    """
    Rule groups keyed by operator tag.

    Built fresh for each run by read_rules(); nothing here is shared
    between runs.
    """

    def __init__(self, groups: Optional[Dict[str, RuleGroup]] = None):
        self._groups: Dict[str, RuleGroup] = dict(groups or {})

    def tags(self) -> List[str]:
        """Group tags in the order the generated dispatch uses (sorted)."""
        return sorted(self._groups)

    def groups(self) -> List[RuleGroup]:
        """Groups sorted by tag, so generated output is reproducible."""
        return [self._groups[tag] for tag in self.tags()]

    def __getitem__(self, tag: str) -> RuleGroup:
        return self._groups[tag]

    def __contains__(self, tag: str) -> bool:
        return tag in self._groups

    def __iter__(self) -> Iterator[RuleGroup]:
        return iter(self.groups())

    def __len__(self) -> int:
        """Total number of rules across all groups."""
        return sum(len(g) for g in self._groups.values())

    def __bool__(self) -> bool:
        return bool(self._groups)

    def __repr__(self) -> str:
        return f"RuleSet({len(self._groups)} groups, {len(self)} rules)"


def group_key(line: str) -> str:
    """
    The operator tag of a rule line's match expression.

    The first space-delimited token with its leading structural
    character removed: "(Add x y) -> ..." gives "Add".
    """
    return line.split(" ")[0][1:]


def read_rules(text: str) -> RuleSet:
    """
    Group the rule lines of text by operator tag, keeping file order.

    No syntax checking happens here: a malformed rule is only reported
    when it is compiled.
    """
    oprules: Dict[str, List[RuleLine]] = {}
    for lineno, line in enumerate(text.split("\n"), 1):
        i = line.find(COMMENT)
        if i >= 0:
            line = line[:i]
        line = line.strip()
        if not line:
            continue
        oprules.setdefault(group_key(line), []).append(RuleLine(line, lineno))

    logger.debug("read %d rules in %d groups",
                 sum(len(r) for r in oprules.values()), len(oprules))
    return RuleSet({op: RuleGroup(op, rules) for op, rules in oprules.items()})


def load_rules_from_file(path: Union[str, Path]) -> RuleSet:
    """
    Read and group the rules in a UTF-8 rules file.

    Raises RuleSourceError naming the path if it cannot be read.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise RuleSourceError(path, f"can't read rule file: {e}") from e
    logger.debug("loaded %s (%d bytes)", path, len(text))
    return read_rules(text)


def split_rule(rule: Union[str, RuleLine]) -> Rule:
    """
    Split one rule into (match, condition, result) and parse both sides.

    Examples:
        split_rule("(Neg (Neg x)) -> x")
        split_rule("(Lsh x (Const [c])) && c >= 64 -> (Const [{0}])")

    Raises MalformedRule when the arrow is missing or repeated, and
    MalformedExpression when either side does not parse.
    """
    if isinstance(rule, RuleLine):
        text, lineno = rule.text, rule.lineno
    else:
        text, lineno = rule, None

    parts = text.split(ARROW)
    if len(parts) != 2:
        raise MalformedRule(text, lineno)
    lhs = parts[0].strip(" \t")
    result = parts[1].strip(" \t\n")

    match = lhs
    cond = ""
    i = match.find(CONJUNCTION)
    if i >= 0:
        cond = match[i + len(CONJUNCTION):].strip(" \t")
        match = match[:i].strip(" \t")

    try:
        match_pattern = parse_pattern(match)
        result_pattern = parse_pattern(result)
    except MalformedExpression as e:
        e.lineno = lineno
        raise
    return Rule(match_pattern, cond, result_pattern, text, lineno)
