import pytest

from imapreader.errors import ParseError
from imapreader.imap.bodystructure import (
    MESSAGE,
    MULTIPART,
    TEXT,
    body_part_from_wire,
    extract_bodystructure,
    parse_bodystructure,
)
from imapreader.imap.fetch_response import flatten_fetch


SINGLE_TEXT = b'("TEXT" "PLAIN" ("CHARSET" "iso-8859-1") NIL NIL "QUOTED-PRINTABLE" 120 4 NIL NIL NIL NIL)'

MIXED = (
    b'((("TEXT" "PLAIN" ("CHARSET" "utf-8") NIL NIL "7BIT" 10 1 NIL NIL NIL NIL)'
    b'("TEXT" "HTML" ("CHARSET" "utf-8") NIL NIL "QUOTED-PRINTABLE" 30 2 NIL NIL NIL NIL)'
    b' "ALTERNATIVE" ("BOUNDARY" "alt") NIL NIL NIL)'
    b'("APPLICATION" "PDF" ("NAME" "report.pdf") NIL NIL "BASE64" 2048 NIL'
    b' ("ATTACHMENT" ("FILENAME" "report.pdf")) NIL NIL)'
    b' "MIXED" ("BOUNDARY" "mix") NIL NIL NIL)'
)


def test_single_part_leaf():
    part = body_part_from_wire(SINGLE_TEXT)
    assert part.type == TEXT
    assert part.subtype == "PLAIN"
    assert part.encoding == "quoted-printable"
    assert part.charset == "iso-8859-1"
    assert part.size == 120
    assert part.disposition is None
    assert part.parts == ()


def test_nested_multipart():
    root = body_part_from_wire(MIXED)
    assert root.type == MULTIPART
    assert root.subtype == "MIXED"
    assert root.params["boundary"] == "mix"

    alt, pdf = root.parts
    assert alt.type == MULTIPART and alt.subtype == "ALTERNATIVE"
    assert [p.subtype for p in alt.parts] == ["PLAIN", "HTML"]

    assert pdf.content_type == "application/pdf"
    assert pdf.encoding == "base64"
    assert pdf.disposition == "attachment"
    assert pdf.params["filename"] == "report.pdf"
    assert pdf.params["name"] == "report.pdf"


def test_embedded_message_child():
    raw = (
        b'(("TEXT" "PLAIN" ("CHARSET" "us-ascii") NIL NIL "7BIT" 5 1 NIL NIL NIL NIL)'
        b'("MESSAGE" "RFC822" NIL NIL NIL "7BIT" 400'
        b' ("Mon, 1 Jan 2024 00:00:00 +0000" "inner" NIL NIL NIL NIL NIL NIL NIL NIL)'
        b' ("TEXT" "PLAIN" ("CHARSET" "utf-8") NIL NIL "BASE64" 60 1 NIL NIL NIL NIL)'
        b' 12 NIL ("INLINE" NIL) NIL NIL)'
        b' "MIXED" ("BOUNDARY" "b") NIL NIL NIL)'
    )
    root = body_part_from_wire(raw)
    msg = root.parts[1]
    assert msg.type == MESSAGE
    assert msg.is_embedded_message
    assert msg.disposition == "inline"
    (inner,) = msg.parts
    assert inner.content_type == "text/plain"
    assert inner.encoding == "base64"


def test_rfc2231_filename_continuations():
    raw = (
        b'("APPLICATION" "OCTET-STREAM" NIL NIL NIL "BASE64" 10 NIL'
        b' ("ATTACHMENT" ("FILENAME*0*" "utf-8\'\'r%C3%A9sum" "FILENAME*1*" "%C3%A9.txt")) NIL NIL)'
    )
    part = body_part_from_wire(raw)
    assert part.params["filename"] == "résumé.txt"


def test_nil_fields_and_content_id():
    raw = b'("IMAGE" "PNG" NIL "<logo@x>" NIL "BASE64" 99 NIL ("INLINE" NIL) NIL NIL)'
    part = body_part_from_wire(raw)
    assert part.params == {}
    assert part.content_id == "logo@x"
    assert part.description is None
    assert part.disposition == "inline"


def test_quoted_string_with_escapes():
    node = parse_bodystructure(b'("A" "B \\"q\\" C" NIL)')
    assert node == [b"A", b'B "q" C', None]


def test_literal_in_structure():
    node = parse_bodystructure(b'("TEXT" {5}\r\nPLAIN NIL)')
    assert node == [b"TEXT", b"PLAIN", None]


def test_extract_from_fetch_response_with_literal():
    data = [
        (b'7 (UID 42 BODYSTRUCTURE ("APPLICATION" "PDF" ("NAME" {10}', b"report.pdf"),
        b') NIL NIL "BASE64" 12 NIL NIL NIL NIL))',
    ]
    raw = extract_bodystructure(flatten_fetch(data))
    part = body_part_from_wire(raw)
    assert part.params["name"] == "report.pdf"
    assert part.size == 12


def test_extract_returns_none_without_bodystructure():
    assert extract_bodystructure(b"7 (UID 42 FLAGS (\\Seen))") is None


@pytest.mark.parametrize(
    "raw",
    [
        b'("TEXT" "PLAIN"',
        b'"TEXT"',
        b'("TEXT" "PLAIN" NIL)',
        b'("TEXT" "PLAIN \\',
    ],
)
def test_malformed_structure_raises_parse_error(raw):
    with pytest.raises(ParseError):
        body_part_from_wire(raw)


def test_deep_nesting_is_rejected():
    raw = b"(" * 200 + b")" * 200
    with pytest.raises(ParseError):
        parse_bodystructure(raw)
