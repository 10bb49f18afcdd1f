from pydantic import BaseModel


class PromptTemplate(BaseModel):
    title: str
    prompt: str
    category: str


PROMPT_TEMPLATES: list[PromptTemplate] = [
    PromptTemplate(
        title="Draft an email",
        prompt=(
            "Draft a professional email to a client about the project update. "
            "The project is on track and key milestones have been achieved."
        ),
        category="Productivity",
    ),
    PromptTemplate(
        title="Explain a concept",
        prompt=(
            "Explain the concept of quantum computing in simple terms, "
            "as if you were talking to a high school student."
        ),
        category="Education",
    ),
    PromptTemplate(
        title="Write a poem",
        prompt="Write a short, evocative poem about a city at night.",
        category="Creative",
    ),
    PromptTemplate(
        title="Fix this code",
        prompt=(
            "Find the bug in this Python code and explain how to fix it:\n\n"
            "def factorial(n):\n"
            "  if n == 0:\n"
            "    return 1\n"
            "  else:\n"
            "    return n * factorial(n+1)"
        ),
        category="Coding",
    ),
    PromptTemplate(
        title="Start a conversation",
        prompt="Tell me an interesting fact to start our conversation.",
        category="Conversation",
    ),
]
