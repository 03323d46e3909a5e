from loguru import logger
from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from finscope.config import get_settings
from finscope.deps import orchestrator
from finscope.intake import messages
from finscope.intake.messages import ACCOUNT_LABELS, KIND_LABELS, format_brl

settings = get_settings()

CONFIRM_KEYBOARD = InlineKeyboardMarkup(
    [
        [
            InlineKeyboardButton("Sim ✓", callback_data="confirm_yes"),
            InlineKeyboardButton("Não ✗", callback_data="confirm_no"),
        ]
    ]
)

CALLBACK_REPLIES = {
    "confirm_yes": "sim",
    "confirm_no": "não",
}


def _session_id(chat_id: int) -> str:
    return f"tg-{chat_id}"


async def _clear_stale_keyboard(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Remove Sim/Não buttons left on an older summary."""
    stale_msg_id = context.user_data.pop("pending_message_id", None)
    if not stale_msg_id:
        return
    try:
        await context.bot.edit_message_reply_markup(
            chat_id=update.effective_chat.id,
            message_id=stale_msg_id,
            reply_markup=None,
        )
    except Exception as e:
        # Message may have been deleted or already edited
        logger.debug("Could not clear keyboard on message {}: {}", stale_msg_id, e)


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /start command."""
    await update.message.reply_text(
        "Oi! Eu sou o FinScope, seu assistente financeiro.\n\n"
        "Me conta seus gastos, entradas, contas a pagar e metas que eu registro pra você.\n\n"
        "Exemplos:\n"
        '• "Gastei 50 no mercado hoje"\n'
        '• "Recebi 3000 do salário"\n'
        '• "Preciso pagar 1.200 de aluguel dia 10"\n'
        '• "Quero juntar 5 mil para viajar"\n\n'
        "Comandos:\n"
        "/ultimos — Mostra os últimos registros\n"
        "/cancelar — Descarta o registro em andamento\n"
        "/help — Mostra esta mensagem"
    )


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /help command."""
    await start_command(update, context)


async def cancel_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /cancelar: abandon the draft in progress."""
    await _clear_stale_keyboard(update, context)
    await orchestrator.discard(_session_id(update.effective_chat.id))
    await update.message.reply_text("Tudo bem, descartei o que estava em andamento.")


async def recent_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /ultimos command."""
    records = orchestrator.repo.get_all(user_id=str(update.effective_user.id))
    if not records:
        await update.message.reply_text("Nenhum registro ainda.")
        return

    lines = ["*Últimos registros:*\n"]
    for i, record in enumerate(records[-10:], 1):
        line = f"{i}. {KIND_LABELS[record.kind]} ({ACCOUNT_LABELS[record.account_type]}) — {format_brl(record.amount)}"
        if record.date:
            line += f" — {record.date.strftime('%d/%m/%Y')}"
        label = record.category or record.description
        if label:
            line += f" — {label}"
        lines.append(line)
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


async def _run_turn(update: Update, context: ContextTypes.DEFAULT_TYPE, text: str):
    return await orchestrator.handle_turn(
        _session_id(update.effective_chat.id),
        text,
        user_id=str(update.effective_user.id),
    )


async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Plain text messages go straight to the intake flow."""
    await _respond(update, context, update.message.text.strip())


async def _respond(update: Update, context: ContextTypes.DEFAULT_TYPE, user_text: str):
    logger.info("Telegram message in chat {}", update.effective_chat.id)

    await _clear_stale_keyboard(update, context)
    await update.message.chat.send_action("typing")

    result = await _run_turn(update, context, user_text)

    if result.outcome == "present":
        sent = await update.message.reply_text(result.reply, reply_markup=CONFIRM_KEYBOARD)
        context.user_data["pending_message_id"] = sent.message_id
        return

    await update.message.reply_text(result.reply)


async def handle_voice(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Voice notes are not transcribed; use the caption when there is one."""
    if not update.message.caption:
        await update.message.reply_text(
            "Recebi seu áudio! Ainda não consigo transcrever.\n"
            "Pode escrever a mensagem?"
        )
        return

    await _respond(update, context, update.message.caption.strip())


async def handle_confirmation(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle Sim/Não button presses as if the user had typed the answer."""
    query = update.callback_query
    await query.answer()
    context.user_data.pop("pending_message_id", None)

    answer = CALLBACK_REPLIES.get(query.data)
    if answer is None:
        await query.edit_message_text("Opção inválida. Mande uma nova mensagem.")
        return

    try:
        result = await _run_turn(update, context, answer)
    except Exception as e:
        logger.exception("Error handling confirmation: {}", e)
        await query.edit_message_text(messages.REPHRASE)
        return

    if result.outcome == "save_failed":
        await query.edit_message_text(result.reply, reply_markup=CONFIRM_KEYBOARD)
        context.user_data["pending_message_id"] = query.message.message_id
        return
    await query.edit_message_text(query.message.text + "\n\n" + result.reply)


def build_bot_app() -> Application:
    """Build and return the Telegram bot application."""
    app = Application.builder().token(settings.telegram_bot_token).build()

    # Command handlers
    app.add_handler(CommandHandler("start", start_command))
    app.add_handler(CommandHandler("help", help_command))
    app.add_handler(CommandHandler("cancelar", cancel_command))
    app.add_handler(CommandHandler("ultimos", recent_command))

    # Callback query handler for confirmations
    app.add_handler(CallbackQueryHandler(handle_confirmation))

    # Message handlers
    app.add_handler(MessageHandler(filters.VOICE, handle_voice))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_message))

    return app
