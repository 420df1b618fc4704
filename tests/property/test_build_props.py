"""Build determinism under cosmetic source changes."""
from __future__ import annotations

from hypothesis import given, settings, strategies as st

from devchain.config import ToolchainPin

from ..conftest import COUNTER_YAML, build_text

PIN = ToolchainPin()
REFERENCE = build_text(COUNTER_YAML, PIN).code_hash

COMMENT = st.text(alphabet="abcxyz ,.-", max_size=30)


@settings(max_examples=50, deadline=None)
@given(comments=st.lists(COMMENT, min_size=1, max_size=5), indent_blank=st.integers(0, 3))
def test_comments_and_blank_lines_never_change_the_hash(comments, indent_blank):
    lines = COUNTER_YAML.splitlines()
    out = []
    for i, line in enumerate(lines):
        out.append(line)
        if i % 3 == 0:
            out.extend([""] * indent_blank)
            out.append("# " + comments[i % len(comments)])
    assert build_text("\n".join(out) + "\n", PIN).code_hash == REFERENCE


@settings(max_examples=50, deadline=None)
@given(bound=st.integers(0, 10**6))
def test_distinct_constants_give_distinct_hashes(bound):
    text = COUNTER_YAML.replace("PUSH 10", f"PUSH {bound}")
    h = build_text(text, PIN).code_hash
    assert (h == REFERENCE) == (bound == 10)
