import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, get_db, paginate, sanitize, to_obj_id, utcnow
from routers.listings import property_owner_id
from routers.notifications import create_notification
from schemas import Conversation, ConversationContext, ConversationMetadata, Message, Participant
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messages", tags=["messages"])

MAX_CONTENT_LENGTH = 2000
EDIT_WINDOW = timedelta(minutes=15)
NOT_DELETED = {"metadata.isDeleted": {"$ne": True}}


class SendMessageRequest(BaseModel):
    receiverId: Optional[str] = None
    content: Optional[str] = None
    propertyId: Optional[str] = None
    messageType: str = "text"
    attachments: List[str] = []


class EditMessageRequest(BaseModel):
    content: Optional[str] = None


def _clean_content(content: Optional[str]) -> str:
    content = (content or "").strip()
    if not content:
        raise HTTPException(status_code=400, detail="Message content is required")
    if len(content) > MAX_CONTENT_LENGTH:
        raise HTTPException(status_code=400, detail=f"Message cannot exceed {MAX_CONTENT_LENGTH} characters")
    return content


def _get_message_or_404(db: Database, message_id: str) -> Dict:
    message = db["message"].find_one({"_id": to_obj_id(message_id)})
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")
    return message


def _between(a: ObjectId, b: ObjectId) -> Dict:
    return {"$or": [{"sender": a, "receiver": b}, {"sender": b, "receiver": a}]}


def _public_profile(user: Optional[Dict]) -> Dict:
    user = user or {}
    return {
        "id": str(user.get("_id", "")),
        "fullName": user.get("fullName", ""),
        "email": user.get("email", ""),
        "avatar": user.get("avatar", ""),
    }


def get_or_create_conversation(db: Database, sender: Dict, receiver: Dict, prop: Optional[Dict]) -> Dict:
    """The thread for this participant pair and property, created on first message."""
    participant_ids = sorted([sender["_id"], receiver["_id"]], key=str)
    property_id = prop["_id"] if prop else None
    conversation = db["conversation"].find_one({"participantIds": participant_ids, "context.propertyId": property_id})
    if conversation:
        return conversation

    landlord_id = property_owner_id(prop) if prop else None
    now = utcnow()
    return create_document(db, "conversation", Conversation(
        participants=[
            Participant(user=u["_id"], role="landlord" if u["_id"] == landlord_id else "tenant", joinedAt=now)
            for u in (sender, receiver)
        ],
        participantIds=participant_ids,
        context=ConversationContext(
            type="property-inquiry" if prop else "general",
            propertyId=property_id,
            subject=((prop.get("basicInfo") or {}).get("title") or prop.get("title")) if prop else None,
        ),
        metadata=ConversationMetadata(lastActivity=now),
    ))


@router.post("/send", status_code=201)
def send_message(payload: SendMessageRequest, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    if not payload.receiverId:
        raise HTTPException(status_code=400, detail="Receiver is required")
    content = _clean_content(payload.content)
    receiver_id = to_obj_id(payload.receiverId)
    if receiver_id == current_user["_id"]:
        raise HTTPException(status_code=400, detail="You cannot send a message to yourself")
    receiver = db["user"].find_one({"_id": receiver_id})
    if not receiver:
        raise HTTPException(status_code=404, detail="Receiver not found")

    prop = None
    if payload.propertyId:
        prop = db["property"].find_one({"_id": to_obj_id(payload.propertyId)})
        if not prop:
            raise HTTPException(status_code=404, detail="Property not found")

    conversation = get_or_create_conversation(db, current_user, receiver, prop)
    message = create_document(db, "message", Message(
        sender=current_user["_id"],
        receiver=receiver_id,
        property=prop["_id"] if prop else None,
        conversation=conversation["_id"],
        content=content,
        messageType=payload.messageType,
        attachments=payload.attachments,
    ))
    db["conversation"].update_one(
        {"_id": conversation["_id"]},
        {"$set": {"metadata.lastActivity": message["createdAt"], "status": "active", "updatedAt": utcnow()},
         "$inc": {"metadata.messageCount": 1}},
    )

    sender_name = current_user.get("fullName") or current_user["email"]
    create_notification(db, receiver["email"], "message_received", "New Message",
                        f"{sender_name}: {content[:100]}",
                        {"messageId": message["_id"], "senderId": current_user["_id"]})
    return {"success": True, "message": "Message sent successfully", "data": sanitize(message)}


@router.get("/conversations")
def list_conversations(includeArchived: bool = False, current_user=Depends(get_current_user),
                       db: Database = Depends(get_db)):
    me = current_user["_id"]
    messages = db["message"].find({"$and": [{"$or": [{"sender": me}, {"receiver": me}]}, NOT_DELETED]}) \
        .sort("createdAt", -1)

    threads: Dict[ObjectId, Dict[str, Any]] = {}
    for m in messages:
        partner = m["receiver"] if m["sender"] == me else m["sender"]
        thread = threads.setdefault(partner, {"lastMessage": m, "unreadCount": 0})
        if m["receiver"] == me and not m.get("isRead"):
            thread["unreadCount"] += 1

    conv_ids = [t["lastMessage"].get("conversation") for t in threads.values() if t["lastMessage"].get("conversation")]
    statuses = {c["_id"]: c.get("status", "active")
                for c in db["conversation"].find({"_id": {"$in": conv_ids}}, {"status": 1})} if conv_ids else {}
    users = {u["_id"]: u for u in db["user"].find({"_id": {"$in": list(threads)}},
                                                   {"fullName": 1, "email": 1, "avatar": 1})} if threads else {}

    conversations = []
    for partner, thread in threads.items():
        last = thread["lastMessage"]
        status = statuses.get(last.get("conversation"), "active")
        if status == "archived" and not includeArchived:
            continue
        conversations.append({
            "conversationId": str(last["conversation"]) if last.get("conversation") else None,
            "status": status,
            "partner": _public_profile(users.get(partner)),
            "lastMessage": sanitize(last),
            "unreadCount": thread["unreadCount"],
        })
    return {"success": True, "conversations": conversations}


@router.put("/conversations/{conversation_id}/archive")
def archive_conversation(conversation_id: str, current_user=Depends(get_current_user),
                         db: Database = Depends(get_db)):
    conversation = db["conversation"].find_one({"_id": to_obj_id(conversation_id)})
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    if current_user["_id"] not in conversation.get("participantIds", []):
        raise HTTPException(status_code=403, detail="You are not part of this conversation")
    db["conversation"].update_one({"_id": conversation["_id"]}, {"$set": {"status": "archived", "updatedAt": utcnow()}})
    return {"success": True, "message": "Conversation archived"}


@router.get("/conversation/{user_id}")
def get_conversation(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    current_user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    me, partner_id = current_user["_id"], to_obj_id(user_id)
    partner = db["user"].find_one({"_id": partner_id})
    if not partner:
        raise HTTPException(status_code=404, detail="User not found")

    q = {"$and": [_between(me, partner_id), NOT_DELETED]}
    total = db["message"].count_documents(q)
    messages = list(db["message"].find(q).sort("createdAt", 1).skip((page - 1) * limit).limit(limit))

    now = utcnow()
    db["message"].update_many({"sender": partner_id, "receiver": me, "isRead": False},
                              {"$set": {"isRead": True, "readAt": now}})
    return {
        "success": True,
        "partner": _public_profile(partner),
        "messages": [sanitize(m) for m in messages],
        "pagination": paginate(page, limit, total),
    }


@router.post("/conversation/{user_id}/read-all")
def read_all(user_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    res = db["message"].update_many(
        {"sender": to_obj_id(user_id), "receiver": current_user["_id"], "isRead": False},
        {"$set": {"isRead": True, "readAt": utcnow()}},
    )
    return {"success": True, "message": "Messages marked as read", "modified": res.modified_count}


@router.get("/unread/count")
def unread_count(current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    count = db["message"].count_documents({"$and": [{"receiver": current_user["_id"], "isRead": False}, NOT_DELETED]})
    return {"success": True, "unreadCount": count}


@router.put("/{message_id}/read")
def mark_read(message_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    message = _get_message_or_404(db, message_id)
    if message["receiver"] != current_user["_id"]:
        raise HTTPException(status_code=403, detail="Only the receiver can mark a message as read")
    updated = db["message"].find_one_and_update(
        {"_id": message["_id"]},
        {"$set": {"isRead": True, "readAt": message.get("readAt") or utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return {"success": True, "data": sanitize(updated)}


@router.put("/{message_id}/edit")
def edit_message(message_id: str, payload: EditMessageRequest, current_user=Depends(get_current_user),
                 db: Database = Depends(get_db)):
    message = _get_message_or_404(db, message_id)
    if message["sender"] != current_user["_id"]:
        raise HTTPException(status_code=403, detail="You can only edit your own messages")
    if (message.get("metadata") or {}).get("isDeleted"):
        raise HTTPException(status_code=400, detail="Deleted messages cannot be edited")
    if utcnow() - message["createdAt"] > EDIT_WINDOW:
        raise HTTPException(status_code=400, detail="Messages can only be edited within 15 minutes")

    now = utcnow()
    updated = db["message"].find_one_and_update(
        {"_id": message["_id"]},
        {"$set": {"content": _clean_content(payload.content), "metadata.isEdited": True,
                  "metadata.editedAt": now, "updatedAt": now}},
        return_document=ReturnDocument.AFTER,
    )
    return {"success": True, "data": sanitize(updated)}


@router.delete("/{message_id}")
def delete_message(message_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    message = _get_message_or_404(db, message_id)
    if message["sender"] != current_user["_id"]:
        raise HTTPException(status_code=403, detail="You can only delete your own messages")
    now = utcnow()
    db["message"].update_one({"_id": message["_id"]},
                             {"$set": {"metadata.isDeleted": True, "metadata.deletedAt": now, "updatedAt": now}})
    return {"success": True, "message": "Message deleted"}
