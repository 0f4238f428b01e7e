"""Tests for locator extraction, correction advice and artifact patching.

Run:
    python -m pytest agents/test_selector_healing.py -v
"""

from __future__ import annotations

import asyncio
import textwrap
from pathlib import Path

import httpx
import pytest

from agents.errors import AdvisoryError, LLMError, PageFetchError, PatchError
from agents.llm import LLMClient
from agents.selector_healing import (
    ArtifactPatcher,
    CorrectionAdvisor,
    HttpPageFetcher,
    LocatorExtractor,
    LocatorTarget,
    PageFetcher,
    extract_locator,
    extract_page_url,
    replace_locator,
)
from shared.schemas import FailedTest, LocatorCorrection


# ── Helpers ──────────────────────────────────────────────────────────

class FakeLLM(LLMClient):
    def __init__(self, reply: str = "", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.prompts: list[str] = []

    async def complete(self, prompt, *, system=None, max_tokens=1000):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return self.reply


class FakeFetcher(PageFetcher):
    def __init__(self, markup: str = "<html></html>", error: Exception | None = None):
        self.markup = markup
        self.error = error
        self.urls: list[str] = []

    async def fetch(self, url):
        self.urls.append(url)
        if self.error:
            raise self.error
        return self.markup


GOOD_ANSWER = """```json
{
  "originalSelector": "#login-btn",
  "suggestedSelector": "#login-button",
  "elementType": "button",
  "confidence": "HIGH",
  "explanation": "The id was renamed."
}
```"""

SPEC_SOURCE = textwrap.dedent("""\
    import { test, expect } from '@playwright/test';
    import { LoginPage } from '../pages/LoginPage';

    test('login works', async ({ page }) => {
      await page.goto('https://www.saucedemo.com/');
      const login = new LoginPage(page);
      await login.login('standard_user', 'secret_sauce');
    });
""")

PAGE_SOURCE = textwrap.dedent("""\
    import { Page } from '@playwright/test';

    export class LoginPage {
      constructor(private page: Page) {}
      readonly username = this.page.locator('#username');
      readonly loginButton = this.page.locator('#login-btn');
    }
""")


def _checkout(tmp_path: Path, spec: str = SPEC_SOURCE, page: str = PAGE_SOURCE) -> Path:
    (tmp_path / "tests" / "e2e").mkdir(parents=True)
    (tmp_path / "tests" / "pages").mkdir(parents=True)
    (tmp_path / "tests" / "e2e" / "login.spec.ts").write_text(spec)
    (tmp_path / "tests" / "pages" / "LoginPage.ts").write_text(page)
    return tmp_path


def _correction(original="#login-btn", suggested="#login-button", confidence="high"):
    return LocatorCorrection(original, suggested, confidence, "renamed", "button")


# ── Locator extraction ───────────────────────────────────────────────

class TestExtractLocator:
    def test_locator_call_in_timeout_message(self):
        err = "TimeoutError: locator.click: Timeout 30000ms exceeded.\n  - waiting for locator('#login-btn')"
        assert extract_locator(err) == "#login-btn"

    def test_double_quotes_and_backticks(self):
        assert extract_locator('waiting for locator("[data-test=login]")') == "[data-test=login]"
        assert extract_locator("page.locator(`.cart .item`) not found") == ".cart .item"

    def test_wait_for_selector(self):
        assert extract_locator("page.waitForSelector('.spinner'): Timeout") == ".spinner"

    def test_get_by_test_id(self):
        assert extract_locator("getByTestId('submit-order') resolved to 0 elements") == "submit-order"

    def test_dollar_helpers(self):
        assert extract_locator("page.$('#total') returned null") == "#total"
        assert extract_locator("page.$$('li.row') returned []") == "li.row"

    def test_bare_quoted_string_is_not_a_locator(self):
        assert extract_locator("Expected 'Products' but received 'Login'") is None

    def test_empty_input(self):
        assert extract_locator("") is None


class TestExtractPageUrl:
    def test_absolute_url(self):
        assert extract_page_url(SPEC_SOURCE) == "https://www.saucedemo.com/"

    def test_relative_url_without_base_is_absent(self):
        assert extract_page_url("await page.goto('/inventory.html');") is None

    def test_relative_url_with_base(self):
        url = extract_page_url("await page.goto('/inventory.html');", "https://shop.test/")
        assert url == "https://shop.test/inventory.html"

    def test_no_goto(self):
        assert extract_page_url("test('x', async () => {});") is None


class TestLocatorExtractor:
    def test_extracts_target(self):
        failed = FailedTest("login works", "tests/e2e/login.spec.ts", "waiting for locator('#login-btn')")
        target = LocatorExtractor().extract(failed, SPEC_SOURCE)
        assert target == LocatorTarget("#login-btn", "https://www.saucedemo.com/")

    def test_no_locator_in_error(self):
        failed = FailedTest("login works", "tests/e2e/login.spec.ts", "expect(received).toBe(expected)")
        assert LocatorExtractor().extract(failed, SPEC_SOURCE) is None

    def test_no_page_url(self):
        failed = FailedTest("t", "tests/e2e/x.spec.ts", "locator('#a')")
        assert LocatorExtractor().extract(failed, "test('t', async () => {});") is None


# ── Correction advisor ───────────────────────────────────────────────

class TestCorrectionAdvisor:
    def test_fenced_answer_is_parsed(self):
        llm = FakeLLM(GOOD_ANSWER)
        fetcher = FakeFetcher("<button id='login-button'>Login</button>")
        advisor = CorrectionAdvisor(llm, fetcher=fetcher)

        correction = asyncio.run(advisor.advise("#login-btn", "https://www.saucedemo.com/"))

        assert correction.suggested_locator == "#login-button"
        assert correction.confidence == "high"
        assert correction.element_type == "button"
        assert correction.is_applicable
        assert fetcher.urls == ["https://www.saucedemo.com/"]
        assert len(llm.prompts) == 1
        assert "#login-btn" in llm.prompts[0]
        assert "login-button" in llm.prompts[0]

    def test_markup_truncated(self):
        llm = FakeLLM(GOOD_ANSWER)
        advisor = CorrectionAdvisor(llm, fetcher=FakeFetcher("x" * 6000 + "TAIL"))

        asyncio.run(advisor.advise("#login-btn", "https://example.com"))

        prompt = llm.prompts[0]
        assert "x" * 5000 in prompt
        assert "x" * 5001 not in prompt
        assert "TAIL" not in prompt

    def test_fetch_failure_skips_model(self):
        llm = FakeLLM(GOOD_ANSWER)
        advisor = CorrectionAdvisor(llm, fetcher=FakeFetcher(error=PageFetchError("boom")))

        with pytest.raises(AdvisoryError):
            asyncio.run(advisor.advise("#login-btn", "https://example.com"))
        assert llm.prompts == []

    def test_empty_page_is_a_fetch_error(self):
        advisor = CorrectionAdvisor(FakeLLM(GOOD_ANSWER), fetcher=FakeFetcher("   "))
        with pytest.raises(PageFetchError):
            asyncio.run(advisor.advise("#login-btn", "https://example.com"))

    def test_model_error_becomes_advisory_error(self):
        advisor = CorrectionAdvisor(FakeLLM(error=LLMError("rate limited")), fetcher=FakeFetcher())
        with pytest.raises(AdvisoryError, match="rate limited"):
            asyncio.run(advisor.advise("#login-btn", "https://example.com"))

    def test_low_confidence_is_not_applicable(self):
        answer = GOOD_ANSWER.replace("HIGH", "low")
        advisor = CorrectionAdvisor(FakeLLM(answer), fetcher=FakeFetcher())
        correction = asyncio.run(advisor.advise("#login-btn", "https://example.com"))
        assert correction.confidence == "low"
        assert not correction.is_applicable


class TestParseResponse:
    def test_prose_around_json(self):
        raw = 'Sure! {"originalSelector": "#a", "suggestedSelector": "#b", "confidence": "medium", "explanation": "x"} Hope it helps.'
        correction = CorrectionAdvisor.parse_response(raw)
        assert correction.suggested_locator == "#b"
        assert correction.element_type == ""

    def test_not_json(self):
        with pytest.raises(AdvisoryError):
            CorrectionAdvisor.parse_response("I could not find the element.")

    def test_missing_fields(self):
        with pytest.raises(AdvisoryError, match="suggestedSelector"):
            CorrectionAdvisor.parse_response('{"originalSelector": "#a", "confidence": "high", "explanation": ""}')

    def test_unknown_confidence(self):
        raw = '{"originalSelector": "#a", "suggestedSelector": "#b", "confidence": "certain", "explanation": ""}'
        with pytest.raises(AdvisoryError, match="confidence"):
            CorrectionAdvisor.parse_response(raw)

    def test_empty_selector(self):
        raw = '{"originalSelector": "#a", "suggestedSelector": "  ", "confidence": "high", "explanation": ""}'
        with pytest.raises(AdvisoryError):
            CorrectionAdvisor.parse_response(raw)


class TestHttpPageFetcher:
    def test_returns_body(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>ok</html>"))
        body = asyncio.run(HttpPageFetcher(transport=transport).fetch("https://example.com"))
        assert body == "<html>ok</html>"

    def test_http_error_status(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(503, text="down"))
        with pytest.raises(PageFetchError):
            asyncio.run(HttpPageFetcher(transport=transport).fetch("https://example.com"))


# ── Artifact patching ────────────────────────────────────────────────

class TestReplaceLocator:
    def test_quoted_occurrence(self):
        text, changed = replace_locator("page.locator('#old')", "#old", "#new")
        assert changed
        assert text == "page.locator('#new')"

    def test_only_first_site(self):
        text, changed = replace_locator("a('#old'); b('#old');", "#old", "#new")
        assert changed
        assert text == "a('#new'); b('#old');"

    def test_keyed_property(self):
        text, changed = replace_locator("const s = { submit: \"#old\" };", "#old", "#new")
        assert changed
        assert text == "const s = { submit: \"#new\" };"

    def test_regex_characters_are_literal(self):
        text, changed = replace_locator("x('aXb')", "a.b", "c")
        assert not changed
        assert text == "x('aXb')"

    def test_unquoted_substring_is_left_alone(self):
        _, changed = replace_locator("const old = 1; // #old", "#old", "#new")
        assert not changed

    def test_same_locator_is_no_change(self):
        _, changed = replace_locator("x('#a')", "#a", "#a")
        assert not changed

    def test_mismatched_quotes_are_skipped_for_a_paired_site(self):
        text, changed = replace_locator("a('#old\") b(\"#old\")", "#old", "#new")
        assert changed
        assert text == "a('#old\") b(\"#new\")"

    def test_mismatched_quotes_alone_are_left_alone(self):
        text, changed = replace_locator("x('#old\")", "#old", "#new")
        assert not changed
        assert text == "x('#old\")"

    def test_bare_parenthesised_locator(self):
        text, changed = replace_locator("page.$$(#old)", "#old", "#new")
        assert changed
        assert text == "page.$$(#new)"


class TestArtifactPatcher:
    def test_patches_imported_page_object(self, tmp_path):
        checkout = _checkout(tmp_path)
        result = ArtifactPatcher(checkout).apply("tests/e2e/login.spec.ts", _correction())

        assert result.changed
        assert result.file == "tests/pages/LoginPage.ts"
        page = (checkout / "tests/pages/LoginPage.ts").read_text()
        assert "locator('#login-button')" in page
        assert "locator('#username')" in page
        assert (checkout / "tests/e2e/login.spec.ts").read_text() == SPEC_SOURCE

    def test_second_apply_is_a_no_op(self, tmp_path):
        checkout = _checkout(tmp_path)
        patcher = ArtifactPatcher(checkout)
        patcher.apply("tests/e2e/login.spec.ts", _correction())
        before = (checkout / "tests/pages/LoginPage.ts").read_text()

        result = patcher.apply("tests/e2e/login.spec.ts", _correction())

        assert not result.changed
        assert (checkout / "tests/pages/LoginPage.ts").read_text() == before

    def test_falls_back_to_test_file(self, tmp_path):
        spec = SPEC_SOURCE.replace(
            "await login.login('standard_user', 'secret_sauce');",
            "await page.locator('#checkout').click();",
        )
        checkout = _checkout(tmp_path, spec=spec)
        result = ArtifactPatcher(checkout).apply(
            "tests/e2e/login.spec.ts", _correction("#checkout", "[data-test=checkout]")
        )

        assert result.changed
        assert result.file == "tests/e2e/login.spec.ts"
        assert "locator('[data-test=checkout]')" in (checkout / result.file).read_text()

    def test_locator_not_found(self, tmp_path):
        checkout = _checkout(tmp_path)
        result = ArtifactPatcher(checkout).apply("tests/e2e/login.spec.ts", _correction("#nope", "#x"))
        assert not result.changed
        assert result.file is None
        assert (checkout / "tests/pages/LoginPage.ts").read_text() == PAGE_SOURCE

    def test_package_imports_ignored(self, tmp_path):
        checkout = _checkout(tmp_path)
        candidates = ArtifactPatcher(checkout).page_object_candidates("tests/e2e/login.spec.ts", SPEC_SOURCE)
        assert candidates == ["tests/pages/LoginPage.ts"]

    def test_missing_test_file(self, tmp_path):
        with pytest.raises(PatchError):
            ArtifactPatcher(tmp_path).apply("tests/e2e/missing.spec.ts", _correction())

    def test_undecodable_test_file(self, tmp_path):
        checkout = _checkout(tmp_path)
        (checkout / "tests/e2e/login.spec.ts").write_bytes(b"\xff\xfe\x00\x81")
        with pytest.raises(PatchError):
            ArtifactPatcher(checkout).apply("tests/e2e/login.spec.ts", _correction())

    def test_undecodable_page_object(self, tmp_path):
        checkout = _checkout(tmp_path)
        (checkout / "tests/pages/LoginPage.ts").write_bytes(b"\xff\xfe locator('#login-btn')")
        with pytest.raises(PatchError, match="LoginPage.ts"):
            ArtifactPatcher(checkout).apply("tests/e2e/login.spec.ts", _correction())

    def test_no_temp_files_left(self, tmp_path):
        checkout = _checkout(tmp_path)
        ArtifactPatcher(checkout).apply("tests/e2e/login.spec.ts", _correction())
        assert sorted(p.name for p in (checkout / "tests/pages").iterdir()) == ["LoginPage.ts"]
