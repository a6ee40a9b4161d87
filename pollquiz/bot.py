import asyncio
import datetime
import logging
import os
from typing import Dict, List, Optional, Sequence

import discord
from discord import app_commands
from discord.ext import commands

from .ai_client import AIClient
from .config_manager import ConfigManager
from .context import ContextRetriever
from .data_manager import DataManager
from .errors import AlreadyActiveError, QuizCancelledError, QuizError
from .models import GenerationRequest
from .question_source import GeneratedQuestionSource, StaticQuestionSource
from .quiz_session import QuizSession
from .session_registry import SessionRegistry
from .transport import Transport, split_message

logger = logging.getLogger(__name__)

POLL_DURATION = datetime.timedelta(hours=1)
MAX_POLL_QUESTION_LENGTH = 300
MAX_POLL_ANSWER_LENGTH = 55
MAX_DOCUMENT_SIZE = 20 * 1024 * 1024  # 20MB
CHAT_SYSTEM_PROMPT = "You are a friendly study assistant in a quiz chat. Answer briefly and clearly."

DIFFICULTY_CHOICES = [
    app_commands.Choice(name="Easy", value="easy"),
    app_commands.Choice(name="Medium", value="medium"),
    app_commands.Choice(name="Hard", value="hard"),
]


def _truncate(text: str, limit: int) -> str:
    # cut without a marker so the stored answer stays a substring of the option
    return text[:limit]


class DiscordTransport(Transport):
    """Sends quiz polls and messages through a discord.py client."""

    def __init__(self, client: discord.Client):
        self.client = client
        # poll message id -> answer texts in answer_id order
        self._poll_answers: Dict[str, List[str]] = {}
        self._poll_messages: Dict[str, discord.Message] = {}

    async def _get_channel(self, chat_id: str) -> discord.abc.Messageable:
        channel = self.client.get_channel(int(chat_id))
        if channel is None:
            channel = await self.client.fetch_channel(int(chat_id))
        return channel

    async def send_poll(self, chat_id: str, question_text: str, options: Sequence[str]) -> str:
        channel = await self._get_channel(chat_id)
        poll = discord.Poll(question=_truncate(question_text, MAX_POLL_QUESTION_LENGTH), duration=POLL_DURATION)
        answers = []
        for option in options:
            text = _truncate(option, MAX_POLL_ANSWER_LENGTH)
            poll.add_answer(text=text)
            answers.append(text)

        message = await channel.send(poll=poll)
        poll_id = str(message.id)
        self._poll_answers[poll_id] = answers
        self._poll_messages[poll_id] = message
        return poll_id

    async def send_text(self, chat_id: str, text: str, mentions: Optional[Sequence[str]] = None) -> None:
        channel = await self._get_channel(chat_id)
        for mention in mentions or []:
            text = text.replace(f"@{mention}", f"<@{mention}>")
        allowed = discord.AllowedMentions(users=True, roles=False, everyone=False)
        for chunk in split_message(text):
            await channel.send(chunk, allowed_mentions=allowed)

    async def resolve_answer_text(self, chat_id: str, poll_id: str, answer_id: int) -> Optional[str]:
        """Text of a poll answer, from the local cache or the poll message itself."""
        answers = self._poll_answers.get(poll_id)
        if answers is not None and 1 <= answer_id <= len(answers):
            return answers[answer_id - 1]

        try:
            channel = await self._get_channel(chat_id)
            message = await channel.fetch_message(int(poll_id))
        except discord.HTTPException as e:
            logger.warning(f"Could not fetch poll message {poll_id}: {e}")
            return None
        if message.poll is None:
            return None
        answer = message.poll.get_answer(answer_id)
        return answer.text if answer else None

    async def close_poll(self, chat_id: str, poll_id: str) -> None:
        """End the Discord poll so the closed question stops taking votes."""
        self._poll_answers.pop(poll_id, None)
        message = self._poll_messages.pop(poll_id, None)
        if message is None:
            return
        try:
            await message.end_poll()
        except (discord.HTTPException, ValueError) as e:
            logger.warning(f"Could not end poll {poll_id} in chat {chat_id}: {e}")


class QuizBot(commands.Bot):
    """Discord bot that runs poll quizzes and answers questions with AI."""

    def __init__(self, config=None):
        intents = discord.Intents.none()
        intents.guilds = True  # Required for slash commands
        intents.guild_messages = True
        intents.dm_messages = True
        intents.polls = True

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,  # Fallback prefix, mainly using slash commands
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}
        self.data_manager: Optional[DataManager] = None
        self.config_manager: Optional[ConfigManager] = None
        self.ai_client: Optional[AIClient] = None
        self.transport = DiscordTransport(self)
        self.registry: Optional[SessionRegistry] = None

    async def setup_hook(self):
        """Called when the bot is starting up"""
        logger.info("Setting up bot components...")
        asyncio.get_running_loop().set_exception_handler(self._handle_loop_exception)

        self.config_manager = ConfigManager()
        self.config_manager.apply_config(self.app_config)

        self.data_manager = DataManager(self.config_manager.get_quiz_directory())
        self.data_manager.load_quiz_files()
        if self.data_manager.is_fallback_quiz_active():
            logger.warning("No quiz file could be loaded; /quiz_file will serve the built-in fallback quiz")

        self.ai_client = AIClient(self.config_manager.get_ai_settings())
        self.registry = SessionRegistry(
            self.transport,
            default_timer=self.config_manager.get_timer_duration(),
            inter_question_pause=self.app_config.get('quiz', {}).get('inter_question_pause', 2.0),
        )

        await self.setup_commands()
        logger.info("Bot setup completed successfully")

    def _handle_loop_exception(self, loop, context):
        """Last line of defence: log unhandled task errors instead of dying."""
        exception = context.get('exception')
        logger.error(
            f"Unhandled error in background task: {context.get('message')}",
            exc_info=exception if exception else None
        )

    async def setup_commands(self):
        """Register all slash commands"""

        @self.tree.command(name="help", description="Display available commands")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="quiz", description="Generate a quiz with AI, optionally from a PDF")
        @app_commands.describe(
            topic="Topic to ask about",
            questions="Number of questions",
            difficulty="Question difficulty",
            timer="Seconds per question",
            document="PDF to take the questions from"
        )
        @app_commands.choices(difficulty=DIFFICULTY_CHOICES)
        async def quiz_command(
            interaction: discord.Interaction,
            topic: str = "General",
            questions: Optional[int] = None,
            difficulty: Optional[str] = None,
            timer: Optional[int] = None,
            document: Optional[discord.Attachment] = None
        ):
            await self.handle_quiz(interaction, topic, questions, difficulty, timer, document)

        @self.tree.command(name="quiz_file", description="Start a quiz from a saved quiz file")
        @app_commands.describe(name="Quiz file name (without .json)", timer="Seconds per question")
        async def quiz_file_command(interaction: discord.Interaction, name: Optional[str] = None, timer: Optional[int] = None):
            await self.handle_quiz_file(interaction, name, timer)

        @self.tree.command(name="stop", description="Stop the current quiz")
        async def stop_command(interaction: discord.Interaction):
            await self.handle_stop(interaction)

        @self.tree.command(name="status", description="Show the current quiz progress")
        async def status_command(interaction: discord.Interaction):
            await self.handle_status(interaction)

        @self.tree.command(name="set_timer", description="Set the default seconds per question (5-300)")
        async def set_timer_command(interaction: discord.Interaction, seconds: int):
            await self.handle_setting(interaction, self.config_manager.set_timer_duration(seconds))
            self.registry.default_timer = self.config_manager.get_timer_duration()

        @self.tree.command(name="set_questions", description="Set the default number of questions (1-50)")
        async def set_questions_command(interaction: discord.Interaction, number: int):
            await self.handle_setting(interaction, self.config_manager.set_question_count(number))

        @self.tree.command(name="set_difficulty", description="Set the default difficulty for generated quizzes")
        @app_commands.choices(difficulty=DIFFICULTY_CHOICES)
        async def set_difficulty_command(interaction: discord.Interaction, difficulty: str):
            await self.handle_setting(interaction, self.config_manager.set_difficulty(difficulty))

        @self.tree.command(name="random_order", description="Toggle random order for saved quiz files")
        async def random_order_command(interaction: discord.Interaction):
            await self.handle_setting(interaction, self.config_manager.toggle_random_order())

        logger.info("Slash commands registered successfully")

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guilds")
        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def on_raw_poll_vote_add(self, payload: discord.RawPollVoteActionEvent):
        """Route a poll vote to the quiz running in its channel."""
        if self.user and payload.user_id == self.user.id:
            return

        chat_id = str(payload.channel_id)
        poll_id = str(payload.message_id)
        session = self.registry.get_session(chat_id) if self.registry else None
        if session is None or poll_id not in session.poll_records:
            return

        try:
            option_text = await self.transport.resolve_answer_text(chat_id, poll_id, payload.answer_id)
            if option_text is None:
                logger.debug(f"Could not resolve answer {payload.answer_id} for poll {poll_id}")
                return
            await self.registry.route_vote(chat_id, poll_id, str(payload.user_id), option_text)
        except Exception as e:
            logger.error(f"Error handling poll vote in chat {chat_id}: {e}", exc_info=True)

    async def on_message(self, message: discord.Message):
        """Answer messages that mention the bot with an AI reply."""
        if message.author.bot or self.user is None or self.user not in message.mentions:
            return

        prompt = message.content.replace(f"<@{self.user.id}>", "").replace(f"<@!{self.user.id}>", "").strip()
        if not prompt:
            return

        try:
            async with message.channel.typing():
                reply = await self.ai_client.chat([
                    {"role": "system", "content": CHAT_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ])
        except QuizError as e:
            logger.warning(f"AI reply failed in chat {message.channel.id}: {e}")
            reply = e.user_message
        except Exception as e:
            logger.error(f"Unexpected error generating AI reply: {e}", exc_info=True)
            reply = "❌ Sorry, something went wrong while thinking about that."

        try:
            chunks = split_message(reply or "🤔")
            await message.reply(chunks[0], mention_author=False)
            for chunk in chunks[1:]:
                await message.channel.send(chunk)
        except discord.HTTPException as e:
            logger.error(f"Failed to send AI reply: {e}")

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        help_embed = discord.Embed(
            title="🎯 Quiz Bot Commands",
            description="Timed multiple-choice quizzes, answered with Discord polls",
            color=0x00ff00
        )
        help_embed.add_field(
            name="🎮 Quizzes",
            value=(
                "`/quiz [topic] [questions] [difficulty] [timer] [document]` - Generate a quiz with AI, "
                "optionally from an attached PDF\n"
                "`/quiz_file [name] [timer]` - Start a quiz from a saved quiz file\n"
                "`/stop` - Stop the current quiz\n"
                "`/status` - Show quiz progress"
            ),
            inline=False
        )
        help_embed.add_field(
            name="📋 Settings",
            value=(
                "`/set_timer <seconds>` - Default seconds per question\n"
                "`/set_questions <number>` - Default number of questions\n"
                "`/set_difficulty <level>` - Default difficulty\n"
                "`/random_order` - Shuffle saved quiz files"
            ),
            inline=False
        )
        help_embed.add_field(
            name="⚙️ Current Settings",
            value=f"```\n{self.config_manager.get_settings_summary()}\n```",
            inline=False
        )
        available_quizzes = self.data_manager.get_available_quizzes()
        if available_quizzes:
            quiz_list = ", ".join(available_quizzes[:10])
            if len(available_quizzes) > 10:
                quiz_list += f" ... and {len(available_quizzes) - 10} more"
            help_embed.add_field(name="📚 Saved Quizzes", value=f"```\n{quiz_list}\n```", inline=False)
        load_problems = self._format_load_problems()
        if load_problems:
            help_embed.add_field(name="⚠️ Quiz File Problems", value=load_problems, inline=False)
        help_embed.set_footer(text="Mention the bot to ask it anything")

        try:
            await interaction.response.send_message(embed=help_embed)
        except discord.HTTPException as e:
            logger.error(f"Error in help command: {e}")

    def _format_load_problems(self) -> str:
        """Short report of quiz files that failed to load, or an empty string."""
        summary = self.data_manager.get_loading_summary()
        if not summary['has_errors']:
            return ""
        lines = [f"• {error}" for error in summary['errors'][:3]]
        if summary['error_count'] > 3:
            lines.append(f"... and {summary['error_count'] - 3} more")
        if summary['fallback_active']:
            lines.append(f"Using the built-in fallback quiz. Check `{summary['quiz_directory']}`.")
        return "\n".join(lines)[:1024]

    async def _announce_start(self, interaction: discord.Interaction, session: QuizSession):
        embed = discord.Embed(
            title="🎯 Quiz Started!",
            description=f"**{session.topic}**",
            color=0x00ff00
        )
        embed.add_field(
            name="📊 Quiz Details",
            value=(
                f"Questions: {session.total_questions}\n"
                f"Timer: {session.timer_seconds} seconds per question"
            ),
            inline=False
        )
        embed.set_footer(text="Vote in each poll before time runs out! Use /stop to end the quiz.")
        try:
            await interaction.followup.send(embed=embed)
        except discord.HTTPException as e:
            logger.error(f"Failed to announce quiz start: {e}")

    async def _start_quiz(self, interaction: discord.Interaction, source, timer: Optional[int]):
        chat_id = str(interaction.channel_id)
        if self.registry.is_active(chat_id):
            await self.send_error_response(interaction, AlreadyActiveError.user_message, "⚠️ Quiz Running")
            return

        if timer is not None:
            if not (ConfigManager.MIN_TIMER_DURATION <= timer <= ConfigManager.MAX_TIMER_DURATION):
                await self.send_error_response(
                    interaction,
                    f"Timer must be between {ConfigManager.MIN_TIMER_DURATION} and "
                    f"{ConfigManager.MAX_TIMER_DURATION} seconds.",
                    "❌ Invalid Timer"
                )
                return

        await interaction.response.defer(thinking=True)
        try:
            await self.registry.start_quiz(
                chat_id,
                source,
                timer_seconds=timer,
                before_start=lambda session: self._announce_start(interaction, session),
            )
        except QuizCancelledError as e:
            await self.send_info_response(interaction, e.user_message, "🛑 Quiz Stopped")
        except QuizError as e:
            logger.warning(f"Quiz start failed in chat {chat_id}: {e}")
            await self.send_error_response(interaction, e.user_message, "❌ Quiz Start Failed")
        except Exception as e:
            logger.error(f"Unexpected error starting quiz in chat {chat_id}: {e}", exc_info=True)
            await self.send_error_response(interaction, "Failed to start quiz", "❌ Quiz Start Error")

    async def handle_quiz(self, interaction: discord.Interaction, topic: str, questions: Optional[int],
                          difficulty: Optional[str], timer: Optional[int], document: Optional[discord.Attachment]):
        """Handle /quiz command"""
        document_bytes = None
        if document is not None:
            is_pdf = (document.content_type or "").startswith("application/pdf") or document.filename.lower().endswith(".pdf")
            if not is_pdf:
                await self.send_error_response(interaction, "Please attach a PDF document.", "❌ Unsupported File")
                return
            if document.size > MAX_DOCUMENT_SIZE:
                await self.send_error_response(interaction, "That PDF is too large (max 20MB).", "❌ File Too Large")
                return
            try:
                document_bytes = await document.read()
            except discord.HTTPException as e:
                logger.error(f"Failed to download attachment {document.filename}: {e}")
                await self.send_error_response(interaction, "Could not download the attachment.", "❌ Download Failed")
                return

        settings = self.config_manager.get_quiz_settings()
        quantity = questions or settings.question_count or ConfigManager.DEFAULT_GENERATED_COUNT
        quantity = max(ConfigManager.MIN_QUESTION_COUNT, min(quantity, ConfigManager.MAX_QUESTION_COUNT))
        request = GenerationRequest(
            topic=topic.strip() or "General",
            quantity=quantity,
            difficulty=difficulty or settings.difficulty,
        )
        retriever = ContextRetriever(self.ai_client) if self.ai_client.supports_embeddings else None
        source = GeneratedQuestionSource(self.ai_client, request, document=document_bytes, retriever=retriever)
        await self._start_quiz(interaction, source, timer)

    async def handle_quiz_file(self, interaction: discord.Interaction, name: Optional[str], timer: Optional[int]):
        """Handle /quiz_file command"""
        available_quizzes = self.data_manager.get_available_quizzes()
        quiz_name = name or (available_quizzes[0] if available_quizzes else None)
        if quiz_name is None or not self.data_manager.quiz_exists(quiz_name):
            listing = ", ".join(available_quizzes) or "none"
            await self.send_error_response(
                interaction,
                f"Quiz '{name}' not found. Available quizzes: {listing}",
                "❌ Quiz Not Found"
            )
            return

        questions = self.data_manager.get_quiz_questions(quiz_name)
        if not questions:
            await self.send_error_response(interaction, f"Quiz '{quiz_name}' has no questions.", "❌ Empty Quiz")
            return

        settings = self.config_manager.get_quiz_settings()
        source = StaticQuestionSource(
            questions,
            topic=quiz_name,
            question_count=settings.question_count,
            random_order=settings.random_order,
        )
        await self._start_quiz(interaction, source, timer)

    async def handle_stop(self, interaction: discord.Interaction):
        """Handle /stop command"""
        chat_id = str(interaction.channel_id)
        try:
            stopped = await self.registry.stop_quiz(chat_id)
            if stopped:
                embed = discord.Embed(title="🛑 Quiz Stopped", description="The quiz has been stopped.", color=0xffaa00)
                await interaction.response.send_message(embed=embed)
            else:
                await self.send_info_response(interaction, "There is no active quiz in this channel.")
        except discord.HTTPException as e:
            logger.error(f"Error in stop command: {e}")

    async def handle_status(self, interaction: discord.Interaction):
        """Handle /status command"""
        chat_id = str(interaction.channel_id)
        session = self.registry.get_session(chat_id)
        try:
            if session is None:
                message = "A quiz is being prepared." if self.registry.is_active(chat_id) else "There is no active quiz in this channel."
                await self.send_info_response(interaction, message)
                return

            progress = session.get_progress()
            embed = discord.Embed(title="📊 Quiz Status", description=f"**{progress['topic']}**", color=0x0099ff)
            embed.add_field(
                name="Progress",
                value=f"Question {progress['current_question']}/{progress['total_questions']}",
                inline=True
            )
            embed.add_field(name="Timer", value=f"{progress['timer_seconds']} seconds", inline=True)
            embed.add_field(name="Participants", value=str(progress['participants']), inline=True)
            await interaction.response.send_message(embed=embed)
        except discord.HTTPException as e:
            logger.error(f"Error in status command: {e}")

    async def handle_setting(self, interaction: discord.Interaction, result: Dict[str, object]):
        """Report the outcome of a settings change."""
        if result['success']:
            await self.send_info_response(interaction, str(result['user_message']), "⚙️ Settings Updated")
        else:
            await self.send_error_response(interaction, str(result['user_message']), "❌ Invalid Setting")

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send error response to user with fallback handling"""
        embed = discord.Embed(title=title, description=message, color=0xff0000)
        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Failed to send error embed: {e}")

    async def send_info_response(self, interaction: discord.Interaction, message: str, title: str = "ℹ️ Information"):
        """Send info response to user"""
        embed = discord.Embed(title=title, description=message, color=0x0099ff)
        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error("Failed to send info response to user")

    async def close(self):
        if self.registry is not None:
            await self.registry.shutdown()
        await super().close()


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = QuizBot(config)

    try:
        logger.info("Starting Discord Quiz Bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
