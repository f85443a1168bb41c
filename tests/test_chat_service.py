from datetime import datetime, timedelta

import pytest

from services.chat_service import ChatService, thread_id_for, thread_owner
from services.exceptions import ForbiddenError, ValidationError

from conftest import FakeConnection

@pytest.fixture
def chat(db, hub):
    return ChatService(db, hub)

def test_thread_ids():
    assert thread_id_for(10) == "admin:10"
    assert thread_owner("admin:10") == 10
    assert thread_owner("admin:x") is None
    assert thread_owner("support:10") is None
    assert thread_owner(5) is None
    assert thread_owner(None) is None

def test_user_and_admin_exchange_messages(chat, hub, customer, admin):
    thread = thread_id_for(customer.user_id)
    listener = FakeConnection()
    hub.subscribe(listener, f"thread:{thread}")

    first = chat.send_message(thread, customer, "  Where is my parcel?  ")
    reply = chat.send_message(thread, admin, "On its way")

    assert first.text == "Where is my parcel?"
    assert first.to_user_id is None
    assert reply.to_user_id == customer.user_id
    assert [m["data"]["text"] for m in listener.events("chat:message")] == ["Where is my parcel?", "On its way"]
    assert [m.id for m in chat.list_messages(thread, customer)] == [first.id, reply.id]

def test_users_cannot_read_other_threads(chat, customer, other_customer):
    thread = thread_id_for(customer.user_id)
    chat.send_message(thread, customer, "hello")
    with pytest.raises(ForbiddenError):
        chat.list_messages(thread, other_customer)
    with pytest.raises(ForbiddenError):
        chat.send_message(thread, other_customer, "hi")
    with pytest.raises(ValidationError):
        chat.list_messages("general", customer)

def test_empty_message_is_rejected(chat, customer):
    with pytest.raises(ValidationError):
        chat.send_message(thread_id_for(customer.user_id), customer, "   ")

def test_mark_read_only_touches_the_other_side(chat, hub, customer, admin):
    thread = thread_id_for(customer.user_id)
    chat.send_message(thread, customer, "one")
    chat.send_message(thread, admin, "two")
    chat.send_message(thread, admin, "three")
    listener = FakeConnection()
    hub.subscribe(listener, f"thread:{thread}")

    assert chat.mark_read(thread, customer) == 2
    assert chat.mark_read(thread, customer) == 0
    assert listener.events("chat:read")[0]["data"]["count"] == 2

    unread = [m.text for m in chat.list_messages(thread, admin) if m.read_at is None]
    assert unread == ["one"]

def test_list_threads(chat, admin, customer, other_customer):
    assert chat.list_threads(customer) == [{"thread_id": "admin:10", "last_message": None}]

    chat.send_message(thread_id_for(customer.user_id), customer, "first")
    chat.send_message(thread_id_for(other_customer.user_id), other_customer, "second")
    chat.send_message(thread_id_for(customer.user_id), admin, "third")

    threads = chat.list_threads(admin)
    assert [t["thread_id"] for t in threads] == ["admin:10", "admin:11"]
    assert threads[0]["last_message"]["text"] == "third"

    mine = chat.list_threads(customer)
    assert [t["thread_id"] for t in mine] == ["admin:10"]
    # admins may narrow to one user
    assert [t["thread_id"] for t in chat.list_threads(admin, user_id=11)] == ["admin:11"]

def test_since_filter(chat, customer):
    thread = thread_id_for(customer.user_id)
    chat.send_message(thread, customer, "old")
    later = datetime.utcnow() + timedelta(hours=1)
    assert chat.list_messages(thread, customer, since=later) == []

def test_non_string_input_is_a_validation_error(chat, customer):
    with pytest.raises(ValidationError):
        chat.send_message(thread_id_for(customer.user_id), customer, 42)
    with pytest.raises(ValidationError):
        chat.list_messages(5, customer)
