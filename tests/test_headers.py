from lantern import Headers


def test_lookup_is_case_insensitive():
    headers = Headers({"Content-Type": "application/json"})

    assert headers["content-type"] == "application/json"
    assert headers["CONTENT-TYPE"] == "application/json"
    assert "Content-type" in headers


def test_repeated_headers_are_folded():
    headers = Headers([("Vary", "Accept"), ("vary", "Accept-Encoding")])

    assert headers["Vary"] == "Accept, Accept-Encoding"
    assert headers.get_list("VARY") == ["Accept", "Accept-Encoding"]
    assert headers.multi_items() == [("vary", "Accept"), ("vary", "Accept-Encoding")]
    assert len(headers) == 1


def test_setitem_replaces_every_value():
    headers = Headers([("Set-Cookie", "a=1"), ("Set-Cookie", "b=2")])

    headers["set-cookie"] = "c=3"

    assert headers.get_list("Set-Cookie") == ["c=3"]


def test_delitem_and_missing_keys():
    headers = Headers({"Date": "Mon, 01 Jan 2024 12:00:00 GMT"})

    del headers["date"]

    assert headers.get("Date") is None
    assert headers.get_list("Date") is None


def test_copy_is_independent():
    headers = Headers({"Content-Length": "3"})
    copied = headers.copy()

    copied["Content-Length"] = "4"

    assert headers["Content-Length"] == "3"
    assert copied == Headers({"content-length": "4"})
    assert headers != copied
