import asyncio

from backend.filekit.doc_model import Hyperlink, ImageRun, TextRun
from backend.filekit.html_fragment import (
    HtmlFragmentWalker,
    css_color_to_hex,
    merge_styles,
    parse_style,
    style_to_run_format,
)


def _walk(html: str, image: bytes | None = None):
    async def fetch_image(url):
        return image

    return asyncio.run(HtmlFragmentWalker(fetch_image).walk(html))


def test_parse_style_ignores_malformed_declarations():
    assert parse_style("color: red; font-weight:700;;bogus") == {"color": "red", "font-weight": "700"}
    assert parse_style(None) == {}


def test_closer_ancestor_wins():
    assert merge_styles([{"color": "red"}, {"color": "blue", "font-style": "italic"}]) == {
        "color": "blue",
        "font-style": "italic",
    }


def test_css_colours():
    assert css_color_to_hex("#ff0000") == "FF0000"
    assert css_color_to_hex("rgb(0, 128, 255)") == "0080FF"
    assert css_color_to_hex("navy") == "000080"
    assert css_color_to_hex("00ff00") == "00FF00"
    assert css_color_to_hex("not-a-colour") is None
    assert css_color_to_hex("") is None


def test_style_to_run_format():
    fmt = style_to_run_format({"font-weight": "600", "font-style": "oblique", "text-decoration": "underline"})
    assert fmt == {"bold": True, "italic": True, "underline": True}
    assert style_to_run_format({"font-weight": "400"}) == {}


def test_inherited_styles_apply_to_text():
    paragraphs = _walk('<p style="color: red">Red <b>bold</b></p>')
    assert len(paragraphs) == 1
    assert paragraphs[0].runs == [
        TextRun(text="Red ", color="FF0000"),
        TextRun(text="bold", color="FF0000", bold=True),
    ]


def test_nested_colour_overrides_outer():
    paragraphs = _walk('<span style="color:#00ff00"><span style="color: blue">x</span></span>')
    assert paragraphs[0].runs == [TextRun(text="x", color="0000FF")]


def test_each_top_level_node_is_a_paragraph():
    paragraphs = _walk("<p>a</p>\n<p>b</p>\n<!-- note -->\n<script>alert(1)</script>")
    assert [p.text for p in paragraphs] == ["a", "b"]


def test_links_and_line_breaks():
    paragraphs = _walk('<div><a href="https://example.com"><em>site</em></a><br>next</div>')
    runs = paragraphs[0].runs
    assert runs[0] == Hyperlink(url="https://example.com", children=(TextRun(text="site", italic=True),))
    assert runs[1] == TextRun(text="\n")
    assert runs[2] == TextRun(text="next")


def test_image_embeds_or_falls_back():
    embedded = _walk('<img src="http://x/a.png" alt="logo">', image=b"png")
    assert embedded[0].runs == [ImageRun(data=b"png", width_px=300, height_px=200, alt="logo")]

    with_alt = _walk('<img src="http://x/a.png" alt="logo">')
    assert with_alt[0].runs == [TextRun(text="logo", italic=True)]

    no_alt = _walk('<p><img src="http://x/a.png"></p>')
    assert no_alt[0].runs == [TextRun(text="[image]", italic=True)]

    assert _walk("<img>") == []


def test_image_inside_link_keeps_its_position():
    paragraphs = _walk('<p><a href="https://e.com">see <img src="http://x/a.png" alt="chart"> here</a></p>', image=b"png")
    runs = paragraphs[0].runs
    assert [type(r).__name__ for r in runs] == ["Hyperlink", "ImageRun", "Hyperlink"]
    assert runs[0].text == "see "
    assert runs[2].text == " here"
    assert all(r.url == "https://e.com" for r in (runs[0], runs[2]))


def test_malformed_image_host_falls_back_to_alt():
    from backend.filekit.fetcher import fetch_image

    paragraphs = asyncio.run(HtmlFragmentWalker(fetch_image).walk('<img src="http://xn--/x.png" alt="logo">'))
    assert paragraphs[0].runs == [TextRun(text="logo", italic=True)]
