import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from imagegen_mcp.sanitizer import sanitize_prompt
from imagegen_mcp.tools.errors import InvalidPromptError


class TestSanitizer(unittest.TestCase):
    def test_trims_whitespace(self) -> None:
        self.assertEqual(sanitize_prompt("  a red cube \n"), "a red cube")

    def test_empty_prompt_rejected(self) -> None:
        with self.assertRaises(InvalidPromptError):
            sanitize_prompt("")

    def test_blank_prompt_rejected(self) -> None:
        with self.assertRaises(InvalidPromptError):
            sanitize_prompt(" \t\n ")

    def test_non_string_rejected(self) -> None:
        with self.assertRaises(InvalidPromptError):
            sanitize_prompt(42)

    def test_control_characters_removed(self) -> None:
        self.assertEqual(sanitize_prompt("a\x00 red\x07 cube"), "a red cube")

    def test_line_endings_normalized(self) -> None:
        self.assertEqual(sanitize_prompt("line one\r\nline two\rthree"), "line one\nline two\nthree")

    def test_wording_is_untouched(self) -> None:
        prompt = "A Photo of   two cats, 4K!"
        self.assertEqual(sanitize_prompt(prompt), prompt)

    def test_max_length(self) -> None:
        sanitize_prompt("x" * 10, max_length=10)
        with self.assertRaises(InvalidPromptError) as ctx:
            sanitize_prompt("x" * 11, max_length=10)
        self.assertIn("too long", str(ctx.exception))

    def test_length_measured_after_trim(self) -> None:
        self.assertEqual(sanitize_prompt("   abc   ", max_length=3), "abc")

    def test_blocked_terms_whole_word_case_insensitive(self) -> None:
        with self.assertRaises(InvalidPromptError):
            sanitize_prompt("draw a Forbidden thing", blocked_terms=["forbidden"])
        # Substrings of a longer word are not matches.
        self.assertEqual(
            sanitize_prompt("unforbiddenness", blocked_terms=["forbidden"]),
            "unforbiddenness",
        )

    def test_idempotent(self) -> None:
        samples = [
            "  hello  ",
            "a\r\nb\x00c\t d ",
            "\x1b[31mred\x1b[0m cube",
            "multi\n\n\nline\r\n",
            "été ☃ snow",
        ]
        for raw in samples:
            once = sanitize_prompt(raw)
            self.assertEqual(sanitize_prompt(once), once, msg=repr(raw))


if __name__ == "__main__":
    unittest.main()
