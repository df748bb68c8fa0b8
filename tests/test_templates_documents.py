from __future__ import annotations

from services.template_renderer import button_html, escape_html, newlines_to_br, render_template


def test_render_template_escapes_values():
    out = render_template("Hi {{ name }}, see {{link}}{{missing}}", {"name": "<Bob & 'Co'>", "link": "<a>"}, ["link"])
    assert out == "Hi &lt;Bob &amp; &#x27;Co&#x27;&gt;, see <a>"


def test_render_template_handles_empty_input():
    assert render_template(None, {"a": 1}) == ""
    assert render_template("{{a}}-{{b}}", {"a": 0, "b": None}) == "0-"


def test_helpers():
    assert escape_html('"x"') == "&quot;x&quot;"
    assert escape_html("O'Neil <hr>") == "O&#x27;Neil &lt;hr&gt;"
    assert newlines_to_br("a\r\nb\nc") == "a<br/>b<br/>c"
    assert button_html("https://x.test/?a=1&b=2", "Go").startswith('<a href="https://x.test/?a=1&amp;b=2"')


def test_email_template_upsert_replaces_by_type(api, recruiter, admin):
    _uid, token = recruiter
    _aid, admin_token = admin
    payload = {"type": "task_reminder", "subject": "Due: {{taskTitle}}", "body": "Body"}

    assert api("EMAIL_TEMPLATE_UPSERT", payload, token).status_code == 403

    first = api("EMAIL_TEMPLATE_UPSERT", payload, admin_token).get_json()["data"]
    assert first["created"] is True
    assert first["template"]["type"] == "TASK_REMINDER"

    second = api("EMAIL_TEMPLATE_UPSERT", {**payload, "subject": "Reminder"}, admin_token).get_json()["data"]
    assert second["created"] is False
    assert second["template"]["id"] == first["template"]["id"]

    listed = api("EMAIL_TEMPLATE_LIST", {}, token).get_json()["data"]["templates"]
    assert [t["subject"] for t in listed] == ["Reminder"]

    assert api("EMAIL_TEMPLATE_UPSERT", {"type": "X", "subject": "", "body": "b"}, admin_token).status_code == 400

    tid = first["template"]["id"]
    assert api("EMAIL_TEMPLATE_DELETE", {"id": tid}, admin_token).status_code == 200
    assert api("EMAIL_TEMPLATE_GET", {"id": tid}, token).status_code == 404


def test_documents_crud_and_ownership(api, recruiter, admin, seed_user, login):
    _uid, token = recruiter
    _aid, admin_token = admin
    seed_user("omar@example.com")
    other_token = login("omar@example.com")
    org = api("ORG_CREATE", {"name": "Acme"}, token).get_json()["data"]["organization"]

    assert api("DOCUMENT_CREATE", {"entityType": "job", "entityId": 1, "documentName": "x"}, token).status_code == 400
    res = api("DOCUMENT_CREATE", {"entityType": "organization", "entityId": 999, "documentName": "x"}, token)
    assert res.status_code == 404
    assert res.get_json()["error"]["message"] == "Organization not found"
    assert api("DOCUMENT_CREATE", {"entityType": "organization", "entityId": org["id"]}, token).status_code == 400

    doc = api("DOCUMENT_CREATE", {"entityType": "organization", "entityId": org["id"], "documentName": "MSA.pdf"}, token).get_json()["data"]["document"]
    assert doc["document_type"] == "General"

    docs = api("DOCUMENT_LIST", {"entityType": "organization", "entityId": org["id"]}, token).get_json()["data"]["documents"]
    assert [d["id"] for d in docs] == [doc["id"]]

    assert api("DOCUMENT_UPDATE", {"id": doc["id"], "documentName": "Stolen.pdf"}, other_token).status_code == 403
    res = api("DOCUMENT_UPDATE", {"id": doc["id"], "documentName": "MSA-v2.pdf"}, token)
    assert res.get_json()["data"]["document"]["document_name"] == "MSA-v2.pdf"

    assert api("DOCUMENT_DELETE", {"id": doc["id"]}, other_token).status_code == 403
    assert api("DOCUMENT_DELETE", {"id": doc["id"]}, admin_token).status_code == 200
    assert api("DOCUMENT_GET", {"id": doc["id"]}, token).status_code == 404
