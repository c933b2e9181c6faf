import pytest

from imapreader.charset import EncodingConverter, codec_name


def test_same_charset_is_a_noop():
    conv = EncodingConverter("UTF-8")
    data = b"caf\xc3\xa9"
    assert conv.convert(data, "utf-8") is data


def test_latin1_to_utf8():
    conv = EncodingConverter("UTF-8")
    assert conv.convert(b"caf\xe9", "ISO-8859-1") == "café".encode("utf-8")


def test_utf8_to_latin1_target():
    conv = EncodingConverter("ISO-8859-1")
    assert conv.convert("café".encode("utf-8"), "utf-8") == b"caf\xe9"


def test_unknown_charset_returns_input():
    conv = EncodingConverter()
    data = b"\x81\x82 raw"
    assert conv.convert(data, "x-made-up-charset") == data


def test_missing_charset_returns_input():
    conv = EncodingConverter()
    assert conv.convert(b"abc", None) == b"abc"


def test_unmappable_bytes_are_dropped():
    conv = EncodingConverter("ascii")
    assert conv.convert("naïve".encode("utf-8"), "utf-8") == b"nave"


def test_empty_input():
    assert EncodingConverter().convert(b"", "koi8-r") == b""


def test_to_text():
    assert EncodingConverter().to_text(b"\xcf\xf0\xe8", "windows-1251") == "При"


@pytest.mark.parametrize(
    "label, expected",
    [
        ("UTF-8", "utf-8"),
        ('"iso-8859-1"', "iso8859-1"),
        ("ks_c_5601-1987", "cp949"),
        ("x-sjis", "shift_jis"),
        ("nonsense", None),
        (None, None),
    ],
)
def test_codec_name(label, expected):
    assert codec_name(label) == expected


def test_unknown_target_is_rejected():
    with pytest.raises(LookupError):
        EncodingConverter("no-such-target")
