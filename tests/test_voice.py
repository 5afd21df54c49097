"""
Unit tests for text-to-speech and community voices
"""

import asyncio

import pytest

from src.core.enums import PlanType, TokenPoolType
from src.core.exceptions import QuotaExceededError, UpstreamError
from src.database import crud
from src.database.models import CartesiaToken
from src.services.voice_service import SpeechRequest, VoiceClient, generate_speech, split_text_into_chunks


def test_short_text_single_chunk():
    assert split_text_into_chunks("  Hello there.  ", 100) == ["Hello there."]
    assert split_text_into_chunks("   ", 100) == []


def test_chunks_respect_limit_and_sentences():
    sentence = "This is a sentence that ends here. "
    text = sentence * 40

    chunks = split_text_into_chunks(text, 200)

    assert all(len(chunk) <= 200 for chunk in chunks)
    assert all(chunk.endswith(".") for chunk in chunks)
    assert " ".join(chunks) == text.strip()


def test_chunks_fall_back_to_spaces_then_hard_cut():
    words = "word " * 100
    chunks = split_text_into_chunks(words, 53)
    assert all(len(chunk) <= 53 for chunk in chunks)
    assert " ".join(chunks).split() == words.split()

    solid = "x" * 250
    assert split_text_into_chunks(solid, 100) == ["x" * 100, "x" * 100, "x" * 50]


@pytest.mark.asyncio
async def test_generate_speech_stores_audio(db_session, scale_user, seed_tokens, fake_voice, storage):
    await seed_tokens(TokenPoolType.CARTESIA, count=1, prefix="sk")

    result = await generate_speech(
        db_session,
        scale_user,
        SpeechRequest(text="Assalam o alaikum, welcome to the studio.", voice_id="voice-1"),
        provider="cartesia",
        client=fake_voice,
        storage=storage,
    )

    assert result["audio_url"].startswith("/media/audio/")
    assert result["chunks"] == 1
    assert result["characters_used"] == len("Assalam o alaikum, welcome to the studio.")
    assert (await storage.fetch_blob(result["audio_url"])).startswith(b"ID3")
    assert fake_voice.calls[0][:2] == ("cartesia", "sk-1")


@pytest.mark.asyncio
async def test_generate_speech_rotates_keys(db_session, scale_user, seed_tokens, fake_voice, storage):
    keys = await seed_tokens(TokenPoolType.CARTESIA, count=2, prefix="sk")
    fake_voice.errors["sk-1"] = UpstreamError("402 - payment required", status=402)

    result = await generate_speech(
        db_session, scale_user, SpeechRequest(text="Hello", voice_id="v"), client=fake_voice, storage=storage
    )

    assert result["provider"] == "cartesia"
    assert [call[1] for call in fake_voice.calls] == ["sk-1", "sk-2"]
    rejected = await db_session.get(CartesiaToken, keys[0].id)
    await db_session.refresh(rejected)
    assert rejected.error_count == 1


@pytest.mark.asyncio
async def test_generate_speech_quota_denied(db_session, free_user, seed_tokens, fake_voice, storage):
    await seed_tokens(TokenPoolType.CARTESIA, count=1, prefix="sk")

    with pytest.raises(QuotaExceededError):
        await generate_speech(
            db_session, free_user, SpeechRequest(text="a" * 6000, voice_id="v"), client=fake_voice, storage=storage
        )
    assert fake_voice.calls == []


@pytest.mark.asyncio
async def test_generate_speech_validation(db_session, scale_user, fake_voice, storage):
    with pytest.raises(ValueError):
        await generate_speech(db_session, scale_user, SpeechRequest(text="hi"), provider="acme", client=fake_voice)
    with pytest.raises(ValueError):
        await generate_speech(db_session, scale_user, SpeechRequest(text="  "), client=fake_voice, storage=storage)


@pytest.mark.asyncio
async def test_zyphra_uses_own_pool(db_session, empire_user, seed_tokens, fake_voice, storage):
    await seed_tokens(TokenPoolType.ZYPHRA, count=1, prefix="zk")

    result = await generate_speech(
        db_session, empire_user, SpeechRequest(text="Hello", speaking_rate=20), provider="zyphra",
        client=fake_voice, storage=storage,
    )

    assert result["provider"] == "zyphra"
    assert fake_voice.calls == [("zyphra", "zk-1", "Hello")]


@pytest.mark.asyncio
async def test_community_voice_likes(db_session, scale_user, make_user):
    fan = await make_user("fan", plan_type=PlanType.SCALE)
    voice = await crud.create_community_voice(db_session, scale_user, "Narrator", "cartesia-voice-9")

    assert await crud.toggle_voice_like(db_session, voice, fan.id)
    assert voice.likes_count == 1
    assert await crud.get_liked_voice_ids(db_session, fan.id) == {voice.id}

    assert not await crud.toggle_voice_like(db_session, voice, fan.id)
    assert voice.likes_count == 0


@pytest.mark.asyncio
async def test_only_creator_or_admin_deletes_voice(db_session, scale_user, make_user, admin_user):
    other = await make_user("other", plan_type=PlanType.SCALE)
    voice = await crud.create_community_voice(db_session, scale_user, "Deep", "v-deep")

    with pytest.raises(PermissionError):
        await crud.delete_community_voice(db_session, voice, other)

    await crud.delete_community_voice(db_session, voice, admin_user)
    assert await crud.list_community_voices(db_session) == []


@pytest.mark.asyncio
async def test_client_timeout_becomes_upstream_error(monkeypatch):
    client = VoiceClient()

    async def stall(url, headers, payload):
        raise asyncio.TimeoutError()

    monkeypatch.setattr(client, "_send_audio", stall)

    with pytest.raises(UpstreamError, match="timed out") as exc_info:
        await client.cartesia_tts("sk-1", SpeechRequest(text="hello", voice_id="voice-1"))

    assert exc_info.value.status is None
