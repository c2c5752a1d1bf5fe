import dataclasses
import re
import threading

import pytest

from rewrite_proxy.rewrite.errors import CompileError
from rewrite_proxy.rewrite.rule import (
    RewriteRule,
    _GroupName,
    compile_rule,
    parse_template,
)


class TestCompileRule:
    def test_valid_pattern(self):
        rule = compile_rule(r"//example\.(com|org)", "//example.com/path", "test")
        assert isinstance(rule, RewriteRule)
        assert rule.replacement == "//example.com/path"
        assert rule.name == "test"

    def test_invalid_pattern_fails_fast(self):
        with pytest.raises(CompileError) as exc_info:
            compile_rule("[", "Something", "test")
        message = str(exc_info.value)
        assert message.startswith('test: error compiling regex "[": ')
        assert isinstance(exc_info.value.__cause__, re.error)

    def test_malformed_template_is_accepted(self):
        rule = compile_rule("hello", "${1")
        assert rule.replacement == "${1"

    def test_ascii_word_class(self):
        rule = compile_rule(r"\w+", "x")
        assert rule.substitute("é") == "é"

    def test_rule_is_immutable(self):
        rule = compile_rule("a", "b")
        with pytest.raises(dataclasses.FrozenInstanceError):
            rule.replacement = "c"


class TestSubstitute:
    @pytest.mark.parametrize(
        "original, regex, replacement, expected",
        [
            ("//example.com/hello", "hello", "goodbye", "//example.com/goodbye"),
            ("//example.com/hello", "goodbye", "something-else", "//example.com/hello"),
            (
                "//example.com/hello?param=234&another=123",
                r"(.+)\?(.+)",
                "$1",
                "//example.com/hello",
            ),
            (
                "//cust-company1.example.com/prefix/hello",
                r"//(cust-(\w+))\.example\.com/prefix/(.+)",
                "//$1.example.com/$2/$3",
                "//cust-company1.example.com/company1/hello",
            ),
            (
                "//cust-company1.example.com/prefix/hello",
                r"//cust-(\w+)(.+)prefix/(.+)",
                "//cust-$1$2$1/$3",
                "//cust-company1.example.com/company1/hello",
            ),
            ("//example.com/hello", "//", ":/", ":/example.com/hello"),
        ],
    )
    def test_rewrites(self, original, regex, replacement, expected):
        rule = compile_rule(regex, replacement)
        assert rule.substitute(original) == expected

    def test_no_match_returns_same_object(self):
        rule = compile_rule("absent", "x")
        url = "//example.com/hello"
        assert rule.substitute(url) is url

    def test_replaces_every_match(self):
        rule = compile_rule("o", "0")
        assert rule.substitute("//foo.com/foo") == "//f00.c0m/f00"

    def test_empty_match_after_match_is_not_replaced(self):
        rule = compile_rule("a*", "-")
        assert rule.substitute("baaac") == "-b-c-"

    def test_empty_pattern_inserts_everywhere(self):
        rule = compile_rule("", "-")
        assert rule.substitute("abc") == "-a-b-c-"

    def test_anchor_only_matches_at_start(self):
        rule = compile_rule("^/", "/api/")
        assert rule.substitute("/a/b") == "/api/a/b"

    def test_deterministic(self):
        rule = compile_rule(r"//(\w+)\.example\.com/(.*)", "//example.com/$1/$2")
        results = {rule.substitute("//shop.example.com/cart") for _ in range(50)}
        assert results == {"//example.com/shop/cart"}


class TestTemplateExpansion:
    def _rewrite(self, regex, replacement, url):
        return compile_rule(regex, replacement).substitute(url)

    def test_braced_reference(self):
        assert self._rewrite(r"/(\w+)", "/${1}x", "/ab") == "/abx"

    def test_unbraced_reference_is_greedy(self):
        # "$1x" names a group "1x", which does not exist
        assert self._rewrite(r"/(\w+)", "/$1x", "/ab") == "/"

    def test_named_group(self):
        assert (
            self._rewrite(r"/(?P<tenant>\w+)/", "/t/$tenant/", "/acme/")
            == "/t/acme/"
        )
        assert (
            self._rewrite(r"/(?P<tenant>\w+)/", "/t/${tenant}/", "/acme/")
            == "/t/acme/"
        )

    def test_unknown_named_group_is_empty(self):
        assert self._rewrite(r"/(\w+)", "/$nope!", "/ab") == "/!"

    def test_out_of_range_group_is_empty(self):
        assert self._rewrite(r"/(\w+)", "/$7/$1", "/ab") == "//ab"

    def test_group_zero_is_whole_match(self):
        assert self._rewrite("ab", "[$0]", "xaby") == "x[ab]y"

    def test_unmatched_optional_group_is_empty(self):
        assert self._rewrite(r"/a(b)?", "/[$1]", "/a") == "/[]"

    def test_escaped_dollar(self):
        assert self._rewrite("price", "$$5", "/price") == "/$5"

    def test_lone_dollar_is_literal(self):
        assert self._rewrite("x", "$", "/x") == "/$"
        assert self._rewrite("x", "$-", "/x") == "/$-"
        assert self._rewrite("x", "${1", "/x") == "/${1"

    def test_leading_zero_is_a_name(self):
        assert self._rewrite(r"(a)", "[$01]", "a") == "[]"

    def test_parse_template_parts(self):
        assert parse_template("//$1.example.com/${name}$$") == (
            "//",
            1,
            ".example.com/",
            _GroupName("name"),
            "$",
        )


def test_concurrent_substitution_is_isolated():
    rule = compile_rule(r"//(\w+)\.example\.com/(.+)", "//example.com/$1/$2")
    errors = []

    def worker(index):
        for _ in range(200):
            url = f"//tenant{index}.example.com/page{index}"
            result = rule.substitute(url)
            if result != f"//example.com/tenant{index}/page{index}":
                errors.append((index, result))

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
