"""Unit tests for cast list / cast detail parsing. Fixture HTML only."""

from __future__ import annotations

from salon_sync.profile_parser import (
    CastDetail,
    ExternalTherapistProfile,
    apply_detail,
    parse_cast_detail_html,
    parse_cast_list_html,
)

BASE_URL = "https://estama.jp/shop/43923/cast/"

CAST_LIST_HTML = """
<html><body>
<div class="cast_list">
  <div class="cast_box">
    <a href="/shop/43923/cast/111/">
      <img src="data:image/gif;base64,R0lGOD" data-src="/img/cast/111_main.jpg" alt="花子の写真">
    </a>
    <h3>花子(25)</h3>
    <span class="badge">新人</span><span class="badge">新人</span><span class="tag">人気</span>
    <p class="size">T.160 B.88(D) W.58 H.86</p>
    <div class="sub_photo"><img src="/img/cast/111_2.jpg"><img src="/img/cast/111_3.jpg"></div>
  </div>
  <div class="cast_box">
    <a href="/shop/43923/cast/222/">写真なし</a>
    <h3>ゆき(22)</h3>
  </div>
  <div class="cast_box">
    <a href="/shop/43923/cast/333/"><img src="/img/cast/333.jpg"></a>
    <h3>れな</h3>
  </div>
  <div class="cast_box">
    <a href="/shop/43923/"><img src="/img/cast/444.jpg"></a>
    <h3>まい(30)</h3>
  </div>
  <div class="cast_box">
    <a href="/shop/43923/cast/111/"><img src="/img/cast/111_dup.jpg"></a>
    <h3>花子(25)</h3>
  </div>
  <li class="cast_box">
    <a href="https://estama.jp/shop/43923/cast/555/"><img data-original="https://cdn.example/555_0.png"></a>
    <h4>さくら（28）</h4>
    <p class="size">T.158 W.57</p>
    <div class="sub_photo">
      <img src="https://cdn.example/555_1.png"><img src="https://cdn.example/555_2.png">
      <img src="https://cdn.example/555_3.png"><img src="https://cdn.example/555_4.png">
      <img src="https://cdn.example/555_5.png"><img src="https://cdn.example/555_6.png">
    </div>
  </li>
</div>
</body></html>
"""

DETAIL_HTML = """
<html><body>
<table class="profile">
  <tr><th>体型</th><td>スレンダー</td></tr>
  <tr><th>エステ歴</th><td>約3年</td></tr>
  <tr><th>血液型</th><td>A型</td></tr>
  <tr><th>謎の項目</th><td>???</td></tr>
  <tr><td colspan="2">single cell row</td></tr>
</table>
<dl>
  <dt>趣味：</dt><dd>映画鑑賞</dd>
  <dt>好きな食べ物</dt><dd>お寿司</dd>
</dl>
<div class="message"><p>はじめまして</p><p>よろしくお願いします</p></div>
<a href="https://x.com/intent/tweet?text=hi">share</a>
<a href="https://twitter.com/hanako_estama">X</a>
<div class="photo_list"><img src="/img/cast/111_4.jpg"><img src="/img/cast/111_2.jpg"></div>
</body></html>
"""


class TestParseCastListHtml:
    def test_parses_valid_blocks_only(self):
        profiles, _ = parse_cast_list_html(CAST_LIST_HTML, BASE_URL)
        assert [p.external_id for p in profiles] == ["111", "555"]

    def test_first_block_fields(self):
        profiles, _ = parse_cast_list_html(CAST_LIST_HTML, BASE_URL)
        hanako = profiles[0]
        assert hanako.name == "花子"
        assert hanako.age == 25
        assert hanako.photo_url == "https://estama.jp/img/cast/111_main.jpg"
        assert hanako.photo_alt == "花子の写真"
        assert hanako.detail_url == "https://estama.jp/shop/43923/cast/111/"
        assert hanako.tags == ["新人", "人気"]
        assert (hanako.height, hanako.bust, hanako.cup_size, hanako.waist, hanako.hip) == (
            160, 88, "D", 58, 86,
        )
        assert hanako.photo_urls == [
            "https://estama.jp/img/cast/111_main.jpg",
            "https://estama.jp/img/cast/111_2.jpg",
            "https://estama.jp/img/cast/111_3.jpg",
        ]

    def test_partial_metrics_and_data_original(self):
        profiles, _ = parse_cast_list_html(CAST_LIST_HTML, BASE_URL)
        sakura = profiles[1]
        assert sakura.name == "さくら"
        assert sakura.age == 28
        assert sakura.photo_url == "https://cdn.example/555_0.png"
        assert sakura.height == 158
        assert sakura.waist == 57
        assert sakura.bust is None
        assert sakura.hip is None
        assert sakura.tags == []

    def test_photo_cap(self):
        profiles, _ = parse_cast_list_html(CAST_LIST_HTML, BASE_URL)
        sakura = profiles[1]
        assert len(sakura.photo_urls) == 5
        assert sakura.photo_urls[0] == "https://cdn.example/555_0.png"
        assert sakura.photo_urls[-1] == "https://cdn.example/555_4.png"

    def test_skip_reasons(self):
        _, skipped = parse_cast_list_html(CAST_LIST_HTML, BASE_URL)
        assert [s.reason for s in skipped] == ["missing_photo", "missing_name_age", "missing_id"]
        assert all(s.kind == "cast_block" for s in skipped)

    def test_no_blocks(self):
        assert parse_cast_list_html("<p>maintenance</p>", BASE_URL) == ([], [])


class TestParseCastDetailHtml:
    def test_label_vocabulary(self):
        detail = parse_cast_detail_html(DETAIL_HTML, BASE_URL)
        assert detail.fields == {
            "body_type": "スレンダー",
            "experience_years": 3,
            "blood_type": "A型",
            "hobbies": "映画鑑賞",
            "favorite_food": "お寿司",
        }

    def test_message_paragraphs_joined(self):
        detail = parse_cast_detail_html(DETAIL_HTML, BASE_URL)
        assert detail.message == "はじめまして\nよろしくお願いします"

    def test_x_handle_skips_share_links(self):
        detail = parse_cast_detail_html(DETAIL_HTML, BASE_URL)
        assert detail.x_account == "hanako_estama"

    def test_gallery_absolute(self):
        detail = parse_cast_detail_html(DETAIL_HTML, BASE_URL)
        assert detail.photo_urls == [
            "https://estama.jp/img/cast/111_4.jpg",
            "https://estama.jp/img/cast/111_2.jpg",
        ]

    def test_empty_page(self):
        detail = parse_cast_detail_html("<html></html>", BASE_URL)
        assert detail == CastDetail()


class TestApplyDetail:
    def _profile(self, **kw) -> ExternalTherapistProfile:
        defaults = dict(
            name="花子", external_id="111", age=25,
            photo_url="https://img/1.jpg", photo_urls=["https://img/1.jpg", "https://img/2.jpg"],
        )
        defaults.update(kw)
        return ExternalTherapistProfile(**defaults)

    def test_merges_fields_and_photos(self):
        profile = self._profile(height=160)
        detail = CastDetail(
            fields={"body_type": "グラマー"},
            message="hi",
            x_account="hana",
            photo_urls=["https://img/2.jpg", "https://img/3.jpg"],
        )
        apply_detail(profile, detail)
        assert profile.body_type == "グラマー"
        assert profile.height == 160
        assert profile.message == "hi"
        assert profile.x_account == "hana"
        assert profile.photo_urls == ["https://img/1.jpg", "https://img/2.jpg", "https://img/3.jpg"]

    def test_photo_cap_after_merge(self):
        profile = self._profile()
        detail = CastDetail(photo_urls=[f"https://img/d{i}.jpg" for i in range(6)])
        apply_detail(profile, detail)
        assert len(profile.photo_urls) == 5
        assert profile.photo_urls[:2] == ["https://img/1.jpg", "https://img/2.jpg"]

    def test_absent_values_never_blank(self):
        profile = self._profile(body_type="スレンダー", message="old")
        apply_detail(profile, CastDetail())
        assert profile.body_type == "スレンダー"
        assert profile.message == "old"

    def test_present_fields_omits_none(self):
        profile = self._profile(height=160, hobbies="映画")
        assert profile.present_fields() == {"height": 160, "hobbies": "映画"}
