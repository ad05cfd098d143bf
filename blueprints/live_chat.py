#======================================================================================
#
# LIVE CHAT (visitor <-> support agent)
#
#=======================================================================================
from datetime import datetime
import time
import logging
from flask import Blueprint, jsonify, request, g
from extensions import db
from models import (LiveChatConversation, LiveChatMessage, ConversationStatus, ConversationCategory,
                    SenderType, MessageType, enum_values)
from utils import admin_required, get_json_body, require_string, random_suffix
from exceptions import ValidationError, NotFoundError, PermissionDeniedError

logger = logging.getLogger(__name__)

bp = Blueprint("live_chat", __name__, url_prefix="")

OPEN_STATUSES = (ConversationStatus.WAITING.value, ConversationStatus.ACTIVE.value)
MAX_MESSAGE_LENGTH = 2000


def new_session_id():
    return f"session_{int(time.time() * 1000)}_{random_suffix()}"


def add_message(conversation, content, sender_type, sender_id=None, sender_name=None,
                message_type=MessageType.TEXT.value):
    message = LiveChatMessage(
        conversation=conversation,
        sender_id=sender_id,
        sender_type=sender_type,
        sender_name=sender_name,
        content=content,
        message_type=message_type,
    )
    db.session.add(message)
    return message


def add_system_message(conversation, content):
    return add_message(conversation, content, SenderType.SYSTEM.value,
                       sender_name="System", message_type=MessageType.SYSTEM.value)


def _get_conversation(conversation_id):
    conversation = LiveChatConversation.query.get(conversation_id)
    if not conversation:
        raise NotFoundError("Conversation not found")
    return conversation


def _check_access(conversation):
    """Owned conversations are only visible to their owner (or an admin)."""
    if conversation.user_id is None:
        return
    user = g.get("user")
    if user is None or (user.id != conversation.user_id and not user.is_admin):
        raise PermissionDeniedError("You do not have access to this conversation")


def _check_open(conversation):
    if conversation.status not in OPEN_STATUSES:
        raise ValidationError("This conversation has ended")


# -----------------------------------------
#  VISITOR SIDE
# -----------------------------------------
@bp.route("/api/live-chat/conversations", methods=["POST"])
def start_conversation():
    data = request.get_json(silent=True) or {}
    user = g.get("user")

    if user:
        existing = (LiveChatConversation.query
                    .filter(LiveChatConversation.user_id == user.id,
                            LiveChatConversation.status.in_(OPEN_STATUSES))
                    .order_by(LiveChatConversation.id.desc())
                    .first())
        if existing:
            return jsonify({"conversation": existing.to_dict(), "existing": True}), 200

    category = data.get("category") or ConversationCategory.GENERAL.value
    if category not in enum_values(ConversationCategory):
        raise ValidationError("Unknown category")

    guest_name = (data.get("guestName") or "").strip() or None
    display_name = user.name if user and user.name else (guest_name or "Guest")

    conversation = LiveChatConversation(
        session_id=new_session_id(),
        user_id=user.id if user else None,
        guest_name=None if user else guest_name,
        guest_email=None if user else (data.get("guestEmail") or "").strip().lower() or None,
        subject=(data.get("subject") or "").strip()[:255] or None,
        category=category,
        status=ConversationStatus.WAITING.value,
    )
    db.session.add(conversation)
    add_system_message(conversation, f"{display_name} has started a live chat conversation. "
                                     "Waiting for an available agent...")
    db.session.commit()
    logger.info(f"Live chat {conversation.session_id} started")
    return jsonify({"conversation": conversation.to_dict(), "existing": False}), 201


@bp.route("/api/live-chat/conversations", methods=["GET"])
def get_conversation():
    conversation_id = request.args.get("conversationId", type=int)
    session_id = request.args.get("sessionId")
    if not conversation_id and not session_id:
        raise ValidationError("conversationId or sessionId is required")

    if conversation_id:
        conversation = LiveChatConversation.query.get(conversation_id)
    else:
        conversation = LiveChatConversation.query.filter_by(session_id=session_id).first()
    if not conversation:
        raise NotFoundError("Conversation not found")

    _check_access(conversation)
    return jsonify({"conversation": conversation.to_dict()}), 200


@bp.route("/api/live-chat/conversations/<int:conversation_id>/messages", methods=["POST"])
def send_visitor_message(conversation_id):
    conversation = _get_conversation(conversation_id)
    _check_access(conversation)
    _check_open(conversation)

    content = require_string(get_json_body(), "content", max_length=MAX_MESSAGE_LENGTH, label="Message")
    user = g.get("user")
    message = add_message(
        conversation, content, SenderType.USER.value,
        sender_id=user.id if user else None,
        sender_name=(user.name if user else None) or conversation.guest_name or "Guest",
    )
    db.session.commit()
    return jsonify({"message": message.to_dict()}), 201


@bp.route("/api/live-chat/conversations/<int:conversation_id>/messages", methods=["GET"])
def list_messages(conversation_id):
    conversation = _get_conversation(conversation_id)
    _check_access(conversation)
    return jsonify({"messages": [m.to_dict() for m in conversation.messages]}), 200


@bp.route("/api/live-chat/conversations/<int:conversation_id>/close", methods=["POST"])
def close_conversation(conversation_id):
    conversation = _get_conversation(conversation_id)
    _check_access(conversation)
    data = request.get_json(silent=True) or {}

    rating = data.get("rating")
    if rating is not None:
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5")
        conversation.rating = rating
    feedback = (data.get("feedback") or "").strip()
    if feedback:
        conversation.feedback = feedback

    conversation.status = ConversationStatus.CLOSED.value
    conversation.closed_at = datetime.utcnow()
    db.session.commit()
    return jsonify({"success": True, "conversation": conversation.to_dict()}), 200


# -----------------------------------------
#  AGENT SIDE
# -----------------------------------------
@bp.route("/admin/live-chat/conversations", methods=["GET"])
@admin_required
def admin_list_conversations():
    query = LiveChatConversation.query
    status = request.args.get("status")
    if status:
        if status not in enum_values(ConversationStatus):
            raise ValidationError("Unknown status")
        query = query.filter_by(status=status)
    conversations = query.order_by(LiveChatConversation.created_at.desc(),
                                   LiveChatConversation.id.desc()).all()
    return jsonify({"conversations": [c.to_dict() for c in conversations]}), 200


@bp.route("/admin/live-chat/conversations/<int:conversation_id>/assign", methods=["POST"])
@admin_required
def admin_assign_conversation(conversation_id):
    conversation = _get_conversation(conversation_id)
    _check_open(conversation)

    conversation.assigned_agent_id = g.user.id
    conversation.assigned_at = datetime.utcnow()
    conversation.status = ConversationStatus.ACTIVE.value
    add_system_message(conversation, f"{g.user.name or 'An agent'} has joined the conversation.")
    db.session.commit()
    return jsonify({"success": True, "conversation": conversation.to_dict()}), 200


@bp.route("/admin/live-chat/conversations/<int:conversation_id>/messages", methods=["POST"])
@admin_required
def admin_send_message(conversation_id):
    conversation = _get_conversation(conversation_id)
    _check_open(conversation)
    content = require_string(get_json_body(), "content", max_length=MAX_MESSAGE_LENGTH, label="Message")

    message = add_message(conversation, content, SenderType.AGENT.value,
                          sender_id=g.user.id, sender_name=g.user.name or "Support Agent")
    db.session.commit()
    return jsonify({"message": message.to_dict()}), 201


@bp.route("/admin/live-chat/conversations/<int:conversation_id>/resolve", methods=["POST"])
@admin_required
def admin_resolve_conversation(conversation_id):
    conversation = _get_conversation(conversation_id)
    conversation.status = ConversationStatus.RESOLVED.value
    conversation.resolved_at = datetime.utcnow()
    add_system_message(conversation, f"Conversation marked as resolved by {g.user.name or 'an agent'}.")
    db.session.commit()
    return jsonify({"success": True, "conversation": conversation.to_dict()}), 200
