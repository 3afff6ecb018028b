"""Tests for the response projector."""

import pytest

from bobby.engine.protocol import AssistantChunk, Metadata, Result, Unparseable
from bobby.projector import (
    ERROR_NOTICE,
    NO_OUTPUT_NOTICE,
    ResponseProjector,
    detects_issue_filing,
    extract_title,
    strip_titles,
)


class FakeSurface:
    def __init__(self, fail_sends: int = 0):
        self.sent: list[str] = []
        self._fail_sends = fail_sends

    @property
    def thread_id(self):
        return "thread-1"

    @property
    def name(self):
        return "Bobby - test"

    async def send(self, text: str) -> None:
        if self._fail_sends:
            self._fail_sends -= 1
            raise RuntimeError("discord is down")
        self.sent.append(text)

    async def send_typing(self) -> None:
        pass

    async def set_name(self, name: str) -> None:
        pass

    async def create_thread(self, name: str):
        return self


def chunk(text: str) -> AssistantChunk:
    return AssistantChunk(content_blocks=[{"type": "text", "text": text}], text=text)


async def project(surface, events, returncode=0, stderr=""):
    projector = ResponseProjector(surface)
    for event in events:
        await projector.feed(event)
    return await projector.finish(returncode=returncode, stderr=stderr)


class TestHelpers:
    def test_extract_title(self):
        assert extract_title("[THREAD_TITLE: Auth Bug] The login...") == "Auth Bug"

    def test_extract_title_first_wins(self):
        assert extract_title("[THREAD_TITLE: One] [THREAD_TITLE: Two]") == "One"

    def test_extract_title_case_sensitive(self):
        assert extract_title("[thread_title: nope]") is None

    def test_strip_titles(self):
        assert strip_titles("[THREAD_TITLE: Auth Bug]\nAnswer") == "\nAnswer"

    def test_issue_detection(self):
        assert detects_issue_filing("Created GitHub issue #42")
        assert detects_issue_filing("see https://github.com/acme/app/issues/42")
        assert not detects_issue_filing("see https://github.com/acme/app/pull/42")
        assert not detects_issue_filing("I created an issue")


class TestStreaming:
    @pytest.mark.asyncio
    async def test_one_message_per_chunk_no_result_resend(self):
        surface = FakeSurface()
        summary = await project(
            surface,
            [chunk("Hello "), chunk("world"), Result(status="success", text="Hello world")],
        )

        assert surface.sent == ["Hello ", "world"]
        assert summary.success is True
        assert summary.final_text == "Hello world"
        assert summary.emitted == 2

    @pytest.mark.asyncio
    async def test_result_fallback_when_no_chunks(self):
        surface = FakeSurface()
        summary = await project(surface, [Result(status="success", text="Only result")])

        assert surface.sent == ["Only result"]
        assert summary.success is True
        assert summary.final_text == "Only result"

    @pytest.mark.asyncio
    async def test_tool_only_chunk_not_emitted(self):
        surface = FakeSurface()
        tool = AssistantChunk(content_blocks=[{"type": "tool_use", "name": "Grep"}], text="")
        summary = await project(surface, [tool, Result(status="success", text="Found it")])

        assert surface.sent == ["Found it"]
        assert summary.final_text == "Found it"

    @pytest.mark.asyncio
    async def test_unparseable_ignored(self):
        surface = FakeSurface()
        summary = await project(surface, [Unparseable("junk"), chunk("ok")])

        assert surface.sent == ["ok"]
        assert summary.success is True


class TestTitle:
    @pytest.mark.asyncio
    async def test_title_extracted_and_stripped(self):
        surface = FakeSurface()
        summary = await project(
            surface,
            [chunk("[THREAD_TITLE: Auth Bug]\nThe token expires early.")],
        )

        assert summary.title == "Auth Bug"
        assert summary.final_text == "The token expires early."
        assert "THREAD_TITLE" not in surface.sent[0]

    @pytest.mark.asyncio
    async def test_marker_only_chunk_not_emitted(self):
        surface = FakeSurface()
        summary = await project(surface, [chunk("[THREAD_TITLE: Auth Bug]"), chunk("Answer")])

        assert surface.sent == ["Answer"]
        assert summary.title == "Auth Bug"

    @pytest.mark.asyncio
    async def test_title_from_result(self):
        surface = FakeSurface()
        summary = await project(
            surface, [Result(status="success", text="[THREAD_TITLE: Cache Miss] Details")]
        )

        assert summary.title == "Cache Miss"
        assert surface.sent == ["Details"]

    @pytest.mark.asyncio
    async def test_first_title_wins(self):
        surface = FakeSurface()
        summary = await project(
            surface, [chunk("[THREAD_TITLE: First] a"), chunk("[THREAD_TITLE: Second] b")]
        )
        assert summary.title == "First"
        assert summary.final_text == "a b"


class TestSessionId:
    @pytest.mark.asyncio
    async def test_first_metadata_wins(self):
        summary = await project(
            FakeSurface(),
            [Metadata("sess-1"), Metadata("sess-2"), chunk("x")],
        )
        assert summary.session_id == "sess-1"

    @pytest.mark.asyncio
    async def test_result_session_used_when_unknown(self):
        summary = await project(
            FakeSurface(), [Result(status="success", text="x", session_id="sess-r")]
        )
        assert summary.session_id == "sess-r"

    @pytest.mark.asyncio
    async def test_result_session_does_not_overwrite(self):
        summary = await project(
            FakeSurface(),
            [Metadata("sess-1"), Result(status="success", text="x", session_id="sess-r")],
        )
        assert summary.session_id == "sess-1"


class TestFailures:
    @pytest.mark.asyncio
    async def test_nonzero_exit_after_chunks(self):
        surface = FakeSurface()
        summary = await project(
            surface,
            [chunk("Partial answer")],
            returncode=1,
            stderr="Error: something broke",
        )

        assert summary.success is False
        assert surface.sent == ["Partial answer", ERROR_NOTICE]

    @pytest.mark.asyncio
    async def test_stderr_with_zero_exit(self):
        surface = FakeSurface()
        summary = await project(
            surface, [Result(status="success", text="Done")], returncode=0, stderr="warn"
        )

        assert summary.success is False
        assert surface.sent[-1] == ERROR_NOTICE

    @pytest.mark.asyncio
    async def test_failure_without_output(self):
        surface = FakeSurface()
        summary = await project(surface, [], returncode=1, stderr="boom")

        assert summary.success is False
        assert surface.sent == [ERROR_NOTICE]
        assert "boom" not in ERROR_NOTICE

    @pytest.mark.asyncio
    async def test_clean_exit_without_output(self):
        surface = FakeSurface()
        summary = await project(surface, [Unparseable("noise")])

        assert surface.sent == [NO_OUTPUT_NOTICE]
        assert summary.success is False
        assert summary.final_text == ""

    @pytest.mark.asyncio
    async def test_send_failure_does_not_abort(self):
        surface = FakeSurface(fail_sends=1)
        summary = await project(surface, [chunk("lost"), chunk("kept")])

        assert surface.sent == ["kept"]
        assert summary.emitted == 1
        assert summary.final_text == "lostkept"


class TestIssueDetection:
    @pytest.mark.asyncio
    async def test_detected_from_chunks(self):
        summary = await project(
            FakeSurface(),
            [chunk("Found a bug. "), chunk("Created GitHub issue #12")],
        )
        assert summary.issue_filing_detected is True

    @pytest.mark.asyncio
    async def test_not_detected(self):
        summary = await project(FakeSurface(), [chunk("All good")])
        assert summary.issue_filing_detected is False
