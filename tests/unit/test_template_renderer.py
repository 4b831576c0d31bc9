from __future__ import annotations

from herald.notifications.template_renderer import render, render_pair


def test_render_substitutes_placeholders_and_strips_whitespace():
  assert render("{{ actorName }} liked your post ({{count}})", {"actorName": "Ada", "count": 3}) == "Ada liked your post (3)"


def test_render_missing_and_null_keys_become_empty_strings():
  assert render('{{actorName}} commented: "{{snippet}}"', {"snippet": None}) == ' commented: ""'


def test_render_leaves_text_without_placeholders_untouched():
  assert render("New Follower", {"count": 1}) == "New Follower"


def test_render_pair_uses_the_same_variables():
  title, body = render_pair(title_template="{{count}} new likes", body_template="{{count}} people liked your post", variables={"count": 2})

  assert title == "2 new likes"
  assert body == "2 people liked your post"
