"""
Unit tests for Discord bot integration and API interactions.
"""
import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock, Mock, PropertyMock, patch

import discord

from pollquiz.bot import MAX_POLL_ANSWER_LENGTH, DiscordTransport, QuizBot
from pollquiz.config_manager import ConfigManager
from pollquiz.errors import AllProvidersExhaustedError, QuizCancelledError
from pollquiz.models import Question
from pollquiz.question_source import GeneratedQuestionSource, StaticQuestionSource
from pollquiz.quiz_session import QuizSession
from pollquiz.session_registry import SessionRegistry
from tests.test_fixtures import FakeTransport, SlowSource, TestFixtures, async_test, wait_for


class MockDiscordObjects:
    """Factory for mocked discord.py objects."""

    @staticmethod
    def create_mock_interaction(channel_id: int = 555):
        interaction = Mock()
        interaction.channel_id = channel_id
        interaction.response = Mock()
        interaction.response.send_message = AsyncMock()
        interaction.response.defer = AsyncMock()
        interaction.response.is_done = Mock(return_value=False)
        interaction.followup = Mock()
        interaction.followup.send = AsyncMock()
        return interaction

    @staticmethod
    def create_mock_channel(message_id: int = 123):
        channel = Mock()
        message = Mock(id=message_id)
        message.end_poll = AsyncMock()
        channel.send = AsyncMock(return_value=message)
        channel.fetch_message = AsyncMock()
        return channel

    @staticmethod
    def create_vote_payload(channel_id, message_id, user_id=7, answer_id=2):
        return Mock(channel_id=channel_id, message_id=message_id, user_id=user_id, answer_id=answer_id)


def _sent_embed(mock_send):
    return mock_send.await_args.kwargs['embed']


class TestDiscordTransport(unittest.TestCase):
    """Test DiscordTransport against a mocked client."""

    def setUp(self):
        self.channel = MockDiscordObjects.create_mock_channel()
        self.client = Mock()
        self.client.get_channel.return_value = self.channel
        self.client.fetch_channel = AsyncMock(return_value=self.channel)
        self.transport = DiscordTransport(self.client)

    @async_test
    async def test_send_poll(self):
        long_option = "x" * 80
        poll_id = await self.transport.send_poll("42", "Q1: Capital of India?", [long_option, "Delhi", "Chennai", "Kolkata"])

        self.assertEqual(poll_id, "123")
        self.client.get_channel.assert_called_once_with(42)
        poll = self.channel.send.await_args.kwargs['poll']
        self.assertIsInstance(poll, discord.Poll)
        self.assertEqual(poll.question, "Q1: Capital of India?")
        texts = [answer.text for answer in poll.answers]
        self.assertEqual(len(texts), 4)
        self.assertEqual(texts[0], long_option[:MAX_POLL_ANSWER_LENGTH])
        self.assertEqual(texts[1:], ["Delhi", "Chennai", "Kolkata"])

    @async_test
    async def test_uncached_channel_is_fetched(self):
        self.client.get_channel.return_value = None
        await self.transport.send_text("42", "hello")
        self.client.fetch_channel.assert_awaited_once_with(42)
        self.channel.send.assert_awaited_once()

    @async_test
    async def test_send_text_mentions_and_chunks(self):
        await self.transport.send_text("42", "🥇 @111 : 2/2\n" + "y" * 2500, mentions=["111"])

        calls = self.channel.send.await_args_list
        self.assertEqual(len(calls), 3)
        self.assertTrue(calls[0].args[0].startswith("🥇 <@111> : 2/2"))
        allowed = calls[0].kwargs['allowed_mentions']
        self.assertIsInstance(allowed, discord.AllowedMentions)
        self.assertTrue(allowed.users)
        self.assertFalse(allowed.everyone)

    @async_test
    async def test_resolve_answer_from_cache(self):
        poll_id = await self.transport.send_poll("42", "Q", ["a", "b", "c", "d"])

        self.assertEqual(await self.transport.resolve_answer_text("42", poll_id, 2), "b")
        self.channel.fetch_message.assert_not_awaited()

    @async_test
    async def test_resolve_answer_from_message(self):
        answer = Mock()
        answer.text = "Delhi"
        message = Mock()
        message.poll.get_answer.return_value = answer
        self.channel.fetch_message.return_value = message

        self.assertEqual(await self.transport.resolve_answer_text("42", "999", 2), "Delhi")
        self.channel.fetch_message.assert_awaited_once_with(999)
        message.poll.get_answer.assert_called_once_with(2)

    @async_test
    async def test_resolve_answer_when_message_is_gone(self):
        self.channel.fetch_message.side_effect = discord.NotFound(Mock(status=404, reason="Not Found"), "Unknown Message")
        self.assertIsNone(await self.transport.resolve_answer_text("42", "999", 1))

    @async_test
    async def test_long_correct_option_still_scores(self):
        correct = "The mitochondria is the powerhouse of the cell in eukaryotes"
        question = Question("Which statement is true?", ["Ribosomes store DNA", correct, "Cells lack membranes", "None"], 1)
        session = QuizSession("42", [question], 30, "Biology", self.transport)
        await session.start()

        option_text = await self.transport.resolve_answer_text("42", session.active_poll_id, 2)

        self.assertEqual(option_text, correct[:MAX_POLL_ANSWER_LENGTH])
        self.assertTrue(await session.record_vote(session.active_poll_id, "alice", option_text))
        self.assertEqual(session.scores, {"alice": 1})
        await session.stop()

    @async_test
    async def test_close_poll_ends_poll_and_drops_cache(self):
        poll_id = await self.transport.send_poll("42", "Q", ["a", "b", "c", "d"])
        message = self.channel.send.return_value
        await self.transport.close_poll("42", poll_id)
        self.channel.fetch_message.return_value = Mock(poll=None)

        message.end_poll.assert_awaited_once()
        self.assertIsNone(await self.transport.resolve_answer_text("42", poll_id, 1))
        self.channel.fetch_message.assert_awaited_once()

    @async_test
    async def test_close_poll_survives_end_poll_failure(self):
        poll_id = await self.transport.send_poll("42", "Q", ["a", "b", "c", "d"])
        message = self.channel.send.return_value
        message.end_poll.side_effect = discord.HTTPException(Mock(status=500, reason="Server Error"), "boom")

        await self.transport.close_poll("42", poll_id)
        await self.transport.close_poll("42", poll_id)

        message.end_poll.assert_awaited_once()


class TestQuizBotHandlers(unittest.TestCase):
    """Test QuizBot event and command handlers with mocked dependencies."""

    def _bot(self):
        bot = QuizBot({'bot': {'command_prefix': '?'}})
        bot.config_manager = ConfigManager()
        bot.data_manager = Mock()
        bot.data_manager.get_available_quizzes.return_value = ["capitals"]
        bot.data_manager.get_quiz_questions.side_effect = (
            lambda name: TestFixtures.create_sample_questions() if name == "capitals" else None
        )
        bot.data_manager.quiz_exists.side_effect = lambda name: name == "capitals"
        bot.data_manager.get_loading_summary.return_value = {
            'has_errors': False, 'error_count': 0, 'errors': [], 'fallback_active': False, 'quiz_directory': "quizzes"
        }
        bot.ai_client = Mock()
        bot.ai_client.supports_embeddings = False
        bot.ai_client.chat = AsyncMock(return_value="Gravity pulls things together.")
        self.fake_transport = FakeTransport()
        bot.registry = SessionRegistry(self.fake_transport, default_timer=30, inter_question_pause=0)
        bot.transport = Mock()
        bot.transport.resolve_answer_text = AsyncMock(return_value="Delhi")
        return bot

    def test_intents_include_polls(self):
        bot = QuizBot()
        self.assertTrue(bot.intents.polls)
        self.assertTrue(bot.intents.guilds)
        self.assertEqual(bot.command_prefix, '!')

    @async_test
    async def test_vote_is_routed_to_session(self):
        bot = self._bot()
        session = await bot.registry.start_quiz("555", StaticQuestionSource(TestFixtures.create_sample_questions()))

        await bot.on_raw_poll_vote_add(MockDiscordObjects.create_vote_payload(555, "poll-1", user_id=7, answer_id=2))

        bot.transport.resolve_answer_text.assert_awaited_once_with("555", "poll-1", 2)
        self.assertEqual(session.scores, {"7": 1})
        await bot.registry.shutdown()

    @async_test
    async def test_vote_for_unknown_poll_is_ignored(self):
        bot = self._bot()
        await bot.registry.start_quiz("555", StaticQuestionSource(TestFixtures.create_sample_questions()))

        await bot.on_raw_poll_vote_add(MockDiscordObjects.create_vote_payload(555, "some-other-poll"))
        await bot.on_raw_poll_vote_add(MockDiscordObjects.create_vote_payload(777, "poll-1"))

        bot.transport.resolve_answer_text.assert_not_awaited()
        await bot.registry.shutdown()

    @async_test
    async def test_start_quiz_from_file(self):
        bot = self._bot()
        interaction = MockDiscordObjects.create_mock_interaction()

        await bot.handle_quiz_file(interaction, "capitals", 20)

        interaction.response.defer.assert_awaited_once()
        session = bot.registry.get_session("555")
        self.assertEqual(session.topic, "capitals")
        self.assertEqual(session.timer_seconds, 20)
        self.assertEqual(_sent_embed(interaction.followup.send).title, "🎯 Quiz Started!")
        self.assertEqual(self.fake_transport.polls[0]['question'], "Q1: Capital of India?")
        await bot.registry.shutdown()

    @async_test
    async def test_quiz_file_not_found(self):
        bot = self._bot()
        interaction = MockDiscordObjects.create_mock_interaction()

        await bot.handle_quiz_file(interaction, "missing", None)

        embed = _sent_embed(interaction.response.send_message)
        self.assertEqual(embed.title, "❌ Quiz Not Found")
        self.assertIn("capitals", embed.description)
        self.assertFalse(bot.registry.is_active("555"))

    @async_test
    async def test_second_quiz_in_same_channel_is_rejected(self):
        bot = self._bot()
        await bot.handle_quiz_file(MockDiscordObjects.create_mock_interaction(), "capitals", None)
        interaction = MockDiscordObjects.create_mock_interaction()

        await bot.handle_quiz_file(interaction, "capitals", None)

        interaction.response.defer.assert_not_awaited()
        self.assertEqual(_sent_embed(interaction.response.send_message).title, "⚠️ Quiz Running")
        self.assertEqual(len(self.fake_transport.polls), 1)
        await bot.registry.shutdown()

    @async_test
    async def test_invalid_timer_is_rejected(self):
        bot = self._bot()
        interaction = MockDiscordObjects.create_mock_interaction()

        await bot.handle_quiz_file(interaction, "capitals", 2)

        interaction.response.defer.assert_not_awaited()
        self.assertEqual(_sent_embed(interaction.response.send_message).title, "❌ Invalid Timer")
        self.assertFalse(bot.registry.is_active("555"))

    @async_test
    async def test_generation_failure_is_reported(self):
        bot = self._bot()
        bot.ai_client.complete = AsyncMock(side_effect=AllProvidersExhaustedError(RuntimeError("429")))
        interaction = MockDiscordObjects.create_mock_interaction()
        interaction.response.is_done.return_value = True

        await bot.handle_quiz(interaction, "Rivers", 5, None, None, None)

        embed = _sent_embed(interaction.followup.send)
        self.assertEqual(embed.title, "❌ Quiz Start Failed")
        self.assertEqual(embed.description, AllProvidersExhaustedError.user_message)
        self.assertFalse(bot.registry.is_active("555"))

    @async_test
    async def test_handle_quiz_builds_generation_request(self):
        bot = self._bot()
        bot.config_manager.set_difficulty("hard")
        bot._start_quiz = AsyncMock()
        interaction = MockDiscordObjects.create_mock_interaction()

        await bot.handle_quiz(interaction, "  Rivers  ", 100, None, 60, None)

        _, source, timer = bot._start_quiz.await_args.args
        self.assertIsInstance(source, GeneratedQuestionSource)
        self.assertEqual(source.request.topic, "Rivers")
        self.assertEqual(source.request.quantity, ConfigManager.MAX_QUESTION_COUNT)
        self.assertEqual(source.request.difficulty, "hard")
        self.assertIsNone(source.document)
        self.assertEqual(timer, 60)

    @async_test
    async def test_handle_quiz_rejects_non_pdf(self):
        bot = self._bot()
        bot._start_quiz = AsyncMock()
        interaction = MockDiscordObjects.create_mock_interaction()
        attachment = Mock(content_type="image/png", filename="notes.png", size=100)

        await bot.handle_quiz(interaction, "Rivers", None, None, None, attachment)

        bot._start_quiz.assert_not_awaited()
        self.assertEqual(_sent_embed(interaction.response.send_message).title, "❌ Unsupported File")

    @async_test
    async def test_handle_quiz_reads_pdf(self):
        bot = self._bot()
        bot._start_quiz = AsyncMock()
        interaction = MockDiscordObjects.create_mock_interaction()
        attachment = Mock(content_type="application/pdf", filename="notes.pdf", size=100)
        attachment.read = AsyncMock(return_value=b"%PDF-1.7")

        await bot.handle_quiz(interaction, "Rivers", None, None, None, attachment)

        source = bot._start_quiz.await_args.args[1]
        self.assertEqual(source.document, b"%PDF-1.7")
        self.assertEqual(source.request.quantity, ConfigManager.DEFAULT_GENERATED_COUNT)

    @async_test
    async def test_stop(self):
        bot = self._bot()
        await bot.registry.start_quiz("555", StaticQuestionSource(TestFixtures.create_sample_questions()))
        interaction = MockDiscordObjects.create_mock_interaction()

        await bot.handle_stop(interaction)

        self.assertEqual(_sent_embed(interaction.response.send_message).title, "🛑 Quiz Stopped")
        self.assertFalse(bot.registry.is_active("555"))

    @async_test
    async def test_stop_without_quiz(self):
        bot = self._bot()
        interaction = MockDiscordObjects.create_mock_interaction()

        await bot.handle_stop(interaction)

        self.assertEqual(_sent_embed(interaction.response.send_message).title, "ℹ️ Information")

    @async_test
    async def test_status(self):
        bot = self._bot()
        await bot.registry.start_quiz("555", StaticQuestionSource(TestFixtures.create_sample_questions(), topic="Geo"))
        interaction = MockDiscordObjects.create_mock_interaction()

        await bot.handle_status(interaction)

        embed = _sent_embed(interaction.response.send_message)
        self.assertEqual(embed.description, "**Geo**")
        self.assertEqual(embed.fields[0].value, "Question 1/2")
        await bot.registry.shutdown()

    @async_test
    async def test_setting_results(self):
        bot = self._bot()
        interaction = MockDiscordObjects.create_mock_interaction()
        await bot.handle_setting(interaction, bot.config_manager.set_timer_duration(1000))
        self.assertEqual(_sent_embed(interaction.response.send_message).title, "❌ Invalid Setting")

        interaction = MockDiscordObjects.create_mock_interaction()
        await bot.handle_setting(interaction, bot.config_manager.set_timer_duration(60))
        self.assertEqual(_sent_embed(interaction.response.send_message).title, "⚙️ Settings Updated")

    @async_test
    async def test_help(self):
        bot = self._bot()
        interaction = MockDiscordObjects.create_mock_interaction()

        await bot.handle_help(interaction)

        embed = _sent_embed(interaction.response.send_message)
        self.assertIn("Quiz Bot", embed.title)
        self.assertTrue(any("capitals" in field.value for field in embed.fields))
        self.assertFalse(any(field.name == "⚠️ Quiz File Problems" for field in embed.fields))

    @async_test
    async def test_help_reports_quiz_file_problems(self):
        bot = self._bot()
        bot.data_manager.get_loading_summary.return_value = {
            'has_errors': True,
            'error_count': 4,
            'errors': ["a.json: bad JSON", "b.json: bad JSON", "c.json: bad JSON", "d.json: bad JSON"],
            'fallback_active': True,
            'quiz_directory': "quizzes",
        }
        interaction = MockDiscordObjects.create_mock_interaction()

        await bot.handle_help(interaction)

        embed = _sent_embed(interaction.response.send_message)
        problems = next(field for field in embed.fields if field.name == "⚠️ Quiz File Problems")
        self.assertIn("a.json: bad JSON", problems.value)
        self.assertNotIn("d.json", problems.value)
        self.assertIn("... and 1 more", problems.value)
        self.assertIn("fallback quiz", problems.value)

    @async_test
    async def test_stop_while_quiz_is_being_prepared(self):
        bot = self._bot()
        source = SlowSource()
        start_interaction = MockDiscordObjects.create_mock_interaction()
        start_interaction.response.is_done.return_value = True
        start = asyncio.ensure_future(bot._start_quiz(start_interaction, source, None))
        self.assertTrue(await wait_for(lambda: bot.registry.is_active("555")))
        stop_interaction = MockDiscordObjects.create_mock_interaction()

        await bot.handle_stop(stop_interaction)
        source.release.set()
        await start

        self.assertEqual(_sent_embed(stop_interaction.response.send_message).title, "🛑 Quiz Stopped")
        embed = _sent_embed(start_interaction.followup.send)
        self.assertEqual(embed.description, QuizCancelledError.user_message)
        self.assertEqual(self.fake_transport.polls, [])
        self.assertFalse(bot.registry.is_active("555"))


class TestQuizBotMentions(unittest.TestCase):
    """Test AI replies to messages that mention the bot."""

    def _message(self, content, bot_user):
        message = Mock()
        message.author.bot = False
        message.mentions = [bot_user]
        message.content = content
        message.channel = MagicMock()
        message.channel.send = AsyncMock()
        message.reply = AsyncMock()
        return message

    @async_test
    async def test_mention_gets_ai_reply(self):
        bot = QuizBot()
        bot.ai_client = Mock()
        bot.ai_client.chat = AsyncMock(return_value="Gravity pulls things together.")
        bot_user = Mock(id=99)

        with patch.object(QuizBot, 'user', new_callable=PropertyMock, return_value=bot_user):
            message = self._message("<@99> what is gravity?", bot_user)
            await bot.on_message(message)

        messages = bot.ai_client.chat.await_args.args[0]
        self.assertEqual(messages[-1], {"role": "user", "content": "what is gravity?"})
        message.reply.assert_awaited_once_with("Gravity pulls things together.", mention_author=False)

    @async_test
    async def test_ai_failure_sends_user_message(self):
        bot = QuizBot()
        bot.ai_client = Mock()
        bot.ai_client.chat = AsyncMock(side_effect=AllProvidersExhaustedError())
        bot_user = Mock(id=99)

        with patch.object(QuizBot, 'user', new_callable=PropertyMock, return_value=bot_user):
            message = self._message("<@99> hello", bot_user)
            await bot.on_message(message)

        message.reply.assert_awaited_once_with(AllProvidersExhaustedError.user_message, mention_author=False)

    @async_test
    async def test_messages_without_mention_are_ignored(self):
        bot = QuizBot()
        bot.ai_client = Mock()
        bot.ai_client.chat = AsyncMock()

        with patch.object(QuizBot, 'user', new_callable=PropertyMock, return_value=Mock(id=99)):
            message = self._message("just chatting", Mock(id=1))
            await bot.on_message(message)

        bot.ai_client.chat.assert_not_awaited()


if __name__ == '__main__':
    unittest.main()
