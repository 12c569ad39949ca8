from __future__ import annotations

import json
from decimal import Decimal

import pytest

from statement_ingest.config import Settings
from statement_ingest.errors import (
    DelegateMalformedResponse,
    DelegateNotConfigured,
    DelegateTimeout,
)
from statement_ingest.extraction import (
    DelegateExtractor,
    chunk_text,
    extract_via_delegate,
    parse_extraction_response,
    revalidate_items,
)
from statement_ingest.models import RawTransaction


class _ScriptedClient:
    """Stands in for GenerativeClient; each call pops the next reply or raises it."""

    def __init__(self, replies, *, configured=True, chunk_size=40):
        self.replies = list(replies)
        self.configured = configured
        self.settings = Settings(api_key="k" if configured else None, chunk_size=chunk_size)
        self.prompts: list[str] = []

    def complete(self, prompt, *, temperature, system=None):
        self.prompts.append(prompt)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def _items(*rows):
    return json.dumps(
        [{"date": d, "description": desc, "amount": amt} for d, desc, amt in rows]
    )


TWO_CHUNKS = "15/01/2024 CHECKERS R450.00\n" + "16/01/2024 ENGEN GARAGE R120.50\n"


def test_chunk_text_keeps_whole_lines():
    assert chunk_text("short", max_chars=100) == ["short"]
    assert chunk_text("aaaa\nbbbb\ncccc", max_chars=10) == ["aaaa\nbbbb\n", "cccc\n"]
    # A line longer than the limit is not cut.
    assert chunk_text("x" * 30 + "\nyy", max_chars=10) == ["x" * 30 + "\n", "yy\n"]
    with pytest.raises(ValueError):
        chunk_text("abc", max_chars=0)


def test_parse_extraction_response_finds_arrays_in_prose_and_objects():
    fenced = 'Here you go:\n```json\n[{"description": "SPAR", "amount": 10}]\n```'
    assert parse_extraction_response(fenced) == [{"description": "SPAR", "amount": 10}]
    assert parse_extraction_response('{"transactions": [{"a": 1}]}') == [{"a": 1}]
    assert parse_extraction_response("[]") == []


@pytest.mark.parametrize("content", ["I could not find anything", '{"foo": 1}', ""])
def test_parse_extraction_response_rejects_non_arrays(content):
    with pytest.raises(DelegateMalformedResponse):
        parse_extraction_response(content)


def test_revalidate_items_folds_alternate_fields_and_drops_junk(today):
    items = [
        {"merchant": "Engen", "amount": "R120.50", "date": "16/01/2024", "transactionId": "T1"},
        {"description": "Zero", "amount": 0, "date": "2024-01-16"},
        "not an object",
        {"description": "", "amount": 5},
        {"details": "Spar", "amount": -10},
    ]

    out = revalidate_items(items, today=today)

    assert out == [
        RawTransaction(date="2024-01-16", description="Engen", amount=Decimal("120.50"),
                       reference="T1"),
        RawTransaction(date="2024-03-01", description="Spar", amount=Decimal("10")),
    ]


def test_unconfigured_delegate_raises_without_calling_out(today):
    client = _ScriptedClient([], configured=False)
    extractor = DelegateExtractor(client, today=today)

    assert not extractor.configured
    with pytest.raises(DelegateNotConfigured):
        extractor.extract(TWO_CHUNKS)
    assert client.prompts == []


def test_first_chunk_failure_propagates(today):
    client = _ScriptedClient([DelegateTimeout("took too long")])

    with pytest.raises(DelegateTimeout):
        DelegateExtractor(client, today=today).extract(TWO_CHUNKS)


def test_later_chunk_failure_keeps_earlier_results(today):
    client = _ScriptedClient(
        [_items(("2024-01-15", "CHECKERS", 450.0)), DelegateTimeout("boom")]
    )

    result = DelegateExtractor(client, today=today).extract(TWO_CHUNKS)

    assert [t.description for t in result.transactions] == ["CHECKERS"]
    assert result.errors == ["Extraction of part 2 of 2 failed: boom"]
    assert "part 1 of 2" in client.prompts[0]
    assert "(final)" in client.prompts[1]


def test_unparseable_first_reply_propagates(today):
    client = _ScriptedClient(["no json here"])

    with pytest.raises(DelegateMalformedResponse):
        DelegateExtractor(client, today=today).extract(TWO_CHUNKS)


def test_unparseable_later_reply_contributes_nothing(today):
    client = _ScriptedClient([_items(("2024-01-15", "CHECKERS", 450.0)), "garbage"])

    result = DelegateExtractor(client, today=today).extract(TWO_CHUNKS)

    assert [(t.description, t.amount) for t in result.transactions] == [
        ("CHECKERS", Decimal("450.0"))
    ]
    assert len(result.errors) == 1
    assert result.errors[0].startswith("Extraction of part 2 of 2 failed:")


def test_chunk_results_are_deduplicated(today):
    row = ("2024-01-15", "CHECKERS", 450.0)
    client = _ScriptedClient(
        [_items(row), _items(row, ("2024-01-16", "ENGEN GARAGE", "120.50"))]
    )

    found = extract_via_delegate(TWO_CHUNKS, client=client, today=today)

    assert [(t.description, t.amount) for t in found] == [
        ("CHECKERS", Decimal("450.0")),
        ("ENGEN GARAGE", Decimal("120.50")),
    ]


def test_single_chunk_sends_the_whole_text(today):
    client = _ScriptedClient([_items(("2024-01-15", "CHECKERS", 1))], chunk_size=12_000)

    result = DelegateExtractor(client, today=today).extract(TWO_CHUNKS)

    assert len(client.prompts) == 1
    assert "ENGEN GARAGE R120.50" in client.prompts[0]
    assert result.errors == []
