"""
Conversational responder grounded in the session knowledge base
"""
import structlog

from kbchat.services.config import Settings
from kbchat.services.errors import LLMError, ResponseError
from kbchat.services.llm import LLMService

logger = structlog.get_logger()

FALLBACK_REPLY = (
    "I apologize, but I'm having trouble processing your request right now. "
    "Please try again."
)
EMPTY_REPLY = "I apologize, but I could not generate a response."


def chat_system_prompt(knowledge: str) -> str:
    return f"""You are a helpful AI assistant chatbot. You have been trained on the knowledge base below. Answer questions based on this knowledge base.

IMPORTANT INSTRUCTIONS:
- Answer questions using ONLY the information from the knowledge base below
- Be specific and accurate - cite details from the knowledge base
- If the knowledge base doesn't contain the answer, politely say you don't have that information
- Never invent facts that are not in the knowledge base

FORMATTING RULES:
- Format your responses using Markdown
- Use bullet points (-) for lists and numbered lists for sequential items
- Use **bold** for important terms
- Use ### for section headings when appropriate
- Keep paragraphs short

Keep responses informative but concise.

Knowledge Base:
{knowledge}"""


class ConversationalResponder:
    """Answers one user message from the knowledge base"""

    def __init__(self, llm: LLMService, settings: Settings):
        self.llm = llm
        self.settings = settings

    async def respond(self, message: str, knowledge_base: str) -> str:
        context = knowledge_base[: self.settings.RESPONDER_CONTEXT_CAP]
        logger.info(
            "Generating reply",
            message_length=len(message),
            knowledge_base_length=len(knowledge_base),
            context_used=len(context)
        )

        try:
            reply = await self.llm.complete(
                system=chat_system_prompt(context),
                user=message,
                max_tokens=self.settings.CHAT_MAX_TOKENS,
                temperature=self.settings.CHAT_TEMPERATURE,
                call_site="chat"
            )
        except LLMError as e:
            raise ResponseError(f"Failed to get response: {e.reason}") from e

        return reply.strip() or EMPTY_REPLY
