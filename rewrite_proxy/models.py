from typing import Mapping, Optional

from pydantic import BaseModel

from rewrite_proxy.rewrite import RewriteRule, compile_rule
from rewrite_proxy.vars import REWRITE_NAME, REWRITE_REGEX, REWRITE_REPLACEMENT


class RewriteConfig(BaseModel):
    """Inputs of the rewrite rule, as supplied by the operator."""

    regex: str = ""
    replacement: str = ""

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "RewriteConfig":
        if env is None:
            return cls(regex=REWRITE_REGEX, replacement=REWRITE_REPLACEMENT)
        return cls(
            regex=env.get("REWRITE_REGEX", ""),
            replacement=env.get("REWRITE_REPLACEMENT", ""),
        )

    def compile(self, name: str = REWRITE_NAME) -> RewriteRule:
        """Compile the rule; raises CompileError for an invalid pattern."""
        return compile_rule(self.regex, self.replacement, name)
