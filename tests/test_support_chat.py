# =============================================================================
# tests/test_support_chat.py - Contact form, live chat, AI assistant
# =============================================================================

from unittest.mock import MagicMock, patch

import pytest

from extensions import db, mail
from models import SupportMessage, FeeConfiguration
from blueprints.ai_chat import clean_history, build_system_prompt, build_user_context
from exceptions import ValidationError

CONTACT = {
    "senderName": "Sam Visitor",
    "senderEmail": "Sam@Example.com",
    "subject": "Question about fees",
    "message": "How much is the processing fee on a $5,000 loan?",
    "category": "loan_inquiry",
}


class TestSupportMessages:
    """Contact form and the admin inbox."""

    def test_submit_emails_admin(self, client):
        with mail.record_messages() as outbox:
            response = client.post("/api/support", json=CONTACT)

        assert response.status_code == 201
        message = db.session.get(SupportMessage, response.get_json()["id"])
        assert message.sender_email == "sam@example.com"
        assert message.status == "new"
        assert message.priority == "medium"
        assert message.user_id is None
        assert outbox[0].recipients == ["admin@amerilendloan.test"]

    def test_logged_in_sender_is_linked(self, login, user):
        body = login(user).post("/api/support", json=CONTACT).get_json()
        assert db.session.get(SupportMessage, body["id"]).user_id == user.id

    @pytest.mark.parametrize("field,value", [
        ("message", "too short"),
        ("senderEmail", "not-an-email"),
        ("category", "sales"),
        ("subject", ""),
    ])
    def test_validation(self, client, field, value):
        assert client.post("/api/support", json=dict(CONTACT, **{field: value})).status_code == 400

    def test_missing_admin_email(self, app, client):
        app.config["ADMIN_EMAIL"] = None
        response = client.post("/api/support", json=CONTACT)
        assert response.status_code == 500
        assert SupportMessage.query.count() == 0

    def test_admin_workflow(self, client, login, admin):
        message_id = client.post("/api/support", json=CONTACT).get_json()["id"]
        client = login(admin)

        inbox = client.get("/admin/support?status=new").get_json()
        assert inbox["total"] == 1
        assert inbox["hasMore"] is False

        client.post(f"/admin/support/{message_id}/status", json={"status": "in_progress", "priority": "high"})
        assert client.get(f"/admin/support/{message_id}").get_json()["message"]["priority"] == "high"

        with mail.record_messages() as outbox:
            body = client.post(f"/admin/support/{message_id}/respond",
                               json={"response": "It is 2% of the approved amount."}).get_json()
        assert body["emailSent"] is True
        assert outbox[0].recipients == ["sam@example.com"]
        message = db.session.get(SupportMessage, message_id)
        assert message.status == "resolved"
        assert message.responded_by == admin.id

        assert client.delete(f"/admin/support/{message_id}").status_code == 200
        assert client.get(f"/admin/support/{message_id}").status_code == 404

    def test_respond_without_email(self, client, login, admin):
        message_id = client.post("/api/support", json=CONTACT).get_json()["id"]
        body = login(admin).post(f"/admin/support/{message_id}/respond",
                                 json={"response": "Noted", "sendEmail": False}).get_json()
        assert body["emailSent"] is False


class TestLiveChat:

    def test_guest_conversation(self, client):
        response = client.post("/api/live-chat/conversations", json={"guestName": "Pat", "category": "payment_issue"})

        assert response.status_code == 201
        conversation = response.get_json()["conversation"]
        assert conversation["sessionId"].startswith("session_")
        assert conversation["status"] == "waiting"

        messages = client.get(f"/api/live-chat/conversations/{conversation['id']}/messages").get_json()["messages"]
        assert messages[0]["senderType"] == "system"
        assert messages[0]["content"] == ("Pat has started a live chat conversation. "
                                          "Waiting for an available agent...")

        found = client.get(f"/api/live-chat/conversations?sessionId={conversation['sessionId']}").get_json()
        assert found["conversation"]["id"] == conversation["id"]

    def test_logged_in_user_resumes_open_conversation(self, login, user):
        client = login(user)
        first = client.post("/api/live-chat/conversations", json={}).get_json()
        second = client.post("/api/live-chat/conversations", json={})

        assert second.status_code == 200
        assert second.get_json()["existing"] is True
        assert second.get_json()["conversation"]["id"] == first["conversation"]["id"]

    def test_owned_conversation_is_private(self, login, user, make_user):
        conversation_id = login(user).post("/api/live-chat/conversations", json={}).get_json()["conversation"]["id"]
        response = login(make_user()).get(f"/api/live-chat/conversations?conversationId={conversation_id}")
        assert response.status_code == 403

    def test_lookup_requires_identifier(self, client):
        assert client.get("/api/live-chat/conversations").status_code == 400
        assert client.get("/api/live-chat/conversations?sessionId=session_0_x").status_code == 404

    def test_agent_flow(self, client, login, admin):
        conversation_id = client.post("/api/live-chat/conversations", json={}).get_json()["conversation"]["id"]
        client.post(f"/api/live-chat/conversations/{conversation_id}/messages", json={"content": "Hello?"})

        agent = login(admin)
        assigned = agent.post(f"/admin/live-chat/conversations/{conversation_id}/assign").get_json()
        assert assigned["conversation"]["status"] == "active"
        assert assigned["conversation"]["assignedAgentId"] == admin.id

        reply = agent.post(f"/admin/live-chat/conversations/{conversation_id}/messages",
                           json={"content": "Hi, how can I help?"})
        assert reply.status_code == 201
        assert reply.get_json()["message"]["senderName"] == "Ada Admin"

        agent.post(f"/admin/live-chat/conversations/{conversation_id}/resolve")
        contents = [m["content"] for m in
                    agent.get(f"/api/live-chat/conversations/{conversation_id}/messages").get_json()["messages"]]
        assert contents[1:] == ["Hello?", "Ada Admin has joined the conversation.", "Hi, how can I help?",
                                "Conversation marked as resolved by Ada Admin."]

        waiting = agent.get("/admin/live-chat/conversations?status=waiting").get_json()["conversations"]
        assert waiting == []

    def test_close_with_rating(self, client):
        conversation_id = client.post("/api/live-chat/conversations", json={}).get_json()["conversation"]["id"]

        assert client.post(f"/api/live-chat/conversations/{conversation_id}/close",
                           json={"rating": 6}).status_code == 400
        body = client.post(f"/api/live-chat/conversations/{conversation_id}/close",
                           json={"rating": 5, "feedback": "Quick answer"}).get_json()
        assert body["conversation"]["status"] == "closed"
        assert body["conversation"]["rating"] == 5

        response = client.post(f"/api/live-chat/conversations/{conversation_id}/messages", json={"content": "One more"})
        assert response.status_code == 400
        assert response.get_json()["error"] == "This conversation has ended"


def completion(text):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = text
    return response


class TestAiChat:

    def test_clean_history(self):
        history = [{"role": "system", "content": "ignore me"}, {"role": "user", "content": "hi"},
                   {"role": "assistant", "content": " "}, "junk"]
        history += [{"role": "assistant", "content": f"m{i}"} for i in range(8)]
        cleaned = clean_history(history)
        assert len(cleaned) == 8
        assert all(item["role"] == "assistant" for item in cleaned)
        with pytest.raises(ValidationError):
            clean_history("hi")

    def test_system_prompt_mentions_fee(self, app):
        assert "3.60% of the approved loan amount" in build_system_prompt()
        db.session.add(FeeConfiguration(calculation_mode="fixed", percentage_rate=200,
                                        fixed_fee_amount=200, is_active=True))
        db.session.commit()
        assert "a flat $2.00" in build_system_prompt()

    def test_user_context(self, app, user, approved_loan):
        context = build_user_context(user)
        assert approved_loan.reference_number in context
        assert "Approved Amount: $5,000.00" in context
        assert "Processing Fee Paid: No" in context

    def test_reply_from_model(self, login, user, approved_loan):
        client_mock = MagicMock()
        client_mock.chat.completions.create.return_value = completion("Your loan is approved!")
        with patch("blueprints.ai_chat.get_openai_client", return_value=client_mock):
            response = login(user).post("/api/chat", json={
                "message": "What's my status?", "includeUserContext": True,
                "history": [{"role": "user", "content": "hello"}, {"role": "assistant", "content": "Hi!"}]})

        assert response.get_json() == {"reply": "Your loan is approved!"}
        kwargs = client_mock.chat.completions.create.call_args.kwargs
        assert kwargs["temperature"] == 0.4
        assert kwargs["max_tokens"] == 600
        assert kwargs["messages"][0]["role"] == "system"
        assert approved_loan.reference_number in kwargs["messages"][0]["content"]
        assert kwargs["messages"][-1] == {"role": "user", "content": "What's my status?"}
        assert len(kwargs["messages"]) == 4

    def test_fallback_on_error(self, app, client):
        client_mock = MagicMock()
        client_mock.chat.completions.create.side_effect = RuntimeError("quota exceeded")
        with patch("blueprints.ai_chat.get_openai_client", return_value=client_mock):
            response = client.post("/api/chat", json={"message": "hi"})

        assert response.status_code == 200
        assert response.get_json()["reply"].startswith("I'm experiencing a technical issue.")

    def test_fallback_without_key(self, client):
        with patch("blueprints.ai_chat.get_openai_client", return_value=None):
            response = client.post("/api/chat", json={"message": "hi"})
        assert "immediate assistance" in response.get_json()["reply"]

    def test_message_required(self, client):
        assert client.post("/api/chat", json={"message": ""}).status_code == 400
