"""
Exceptions raised while compiling rule files.

Every failure aborts the generation run. The library raises; only the
command-line front end turns these into a diagnostic and an exit status.
"""

from typing import Optional


class RulegenError(Exception):
    """Base class for all rule generator failures."""


class RuleSourceError(RulegenError):
    """A rule file could not be read, or the output could not be written."""

    def __init__(self, path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


class MalformedRule(RulegenError, ValueError):
    """A rule line has no arrow separator, or more than one."""

    def __init__(self, rule: str, lineno: Optional[int] = None):
        self.rule = rule
        self.lineno = lineno
        if lineno is not None:
            message = f"line {lineno}: no single arrow in rule {rule}"
        else:
            message = f"no single arrow in rule {rule}"
        super().__init__(message)


class MalformedExpression(RulegenError, ValueError):
    """An expression has unbalanced delimiters or an unparseable form."""

    def __init__(self, expression: str, reason: str = "imbalanced expression"):
        self.expression = expression
        self.reason = reason
        # Set by the rule splitter once the source line is known.
        self.lineno: Optional[int] = None
        super().__init__(f"{reason}: {expression}")


class GeneratedSyntaxError(RulegenError):
    """The generated source did not compile."""

    def __init__(self, message: str, lineno: Optional[int] = None,
                 line: Optional[str] = None):
        self.message = message
        self.lineno = lineno
        self.line = line
        text = message
        if lineno is not None:
            text = f"line {lineno}: {message}"
        if line:
            text += f"\n    {line.strip()}"
        super().__init__(text)
