from cratesfyi.html import extract_head_and_body


def test_extracts_head_body_and_class():
    head, body, css_class = extract_head_and_body(
        '<html><head><title>t</title></head><body class="rustdoc"><p>hi</p></body></html>'
    )
    assert head == "<title>t</title>"
    assert body == "<p>hi</p>"
    assert css_class == "rustdoc"


def test_body_without_class():
    _, body, css_class = extract_head_and_body("<html><head></head><body><b>x</b></body></html>")
    assert css_class == ""
    assert body == "<b>x</b>"


def test_fragment_gets_implied_head_and_body():
    head, body, _ = extract_head_and_body("<p>only</p>")
    assert head == ""
    assert body == "<p>only</p>"


def test_attributes_are_preserved():
    _, body, _ = extract_head_and_body(
        '<html><head></head><body><a href="/x">link</a></body></html>'
    )
    assert 'href="/x"' in body
    assert "link" in body


def test_text_is_escaped():
    _, body, _ = extract_head_and_body("<html><body>a &lt; b</body></html>")
    assert "a &lt; b" in body