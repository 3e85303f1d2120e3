"""Call-control directives and their TwiML rendering."""
from typing import List, Optional, Union
from pydantic import BaseModel


class Say(BaseModel):
    """Speak text to the caller."""

    text: str
    language: Optional[str] = None


class Pause(BaseModel):
    """Silence for a number of seconds."""

    seconds: int = 1


class ConnectAgent(BaseModel):
    """Dial an agent's client channel."""

    client: str
    timeout: int = 30
    caller_id: Optional[str] = None
    record: bool = True


class Hangup(BaseModel):
    """End the call."""


Verb = Union[Say, Pause, ConnectAgent, Hangup]


def escape_xml(text: str) -> str:
    """Escape XML special characters."""
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def agent_client_name(agent_id: Union[int, str]) -> str:
    """Client channel name an agent's softphone registers under."""
    return f"agent-{agent_id}"


class CallDirective(BaseModel):
    """Ordered call-control instructions returned to the provider."""

    verbs: List[Verb] = []

    @property
    def connects_agent(self) -> bool:
        return any(isinstance(verb, ConnectAgent) for verb in self.verbs)

    @property
    def hangs_up(self) -> bool:
        return bool(self.verbs) and isinstance(self.verbs[-1], Hangup)

    def to_twiml(self) -> str:
        """Render as TwiML XML."""
        lines = []
        for verb in self.verbs:
            if isinstance(verb, Say):
                language = f' language="{escape_xml(verb.language)}"' if verb.language else ""
                lines.append(f"    <Say{language}>{escape_xml(verb.text)}</Say>")
            elif isinstance(verb, Pause):
                lines.append(f'    <Pause length="{verb.seconds}"/>')
            elif isinstance(verb, ConnectAgent):
                caller_id = f' callerId="{escape_xml(verb.caller_id)}"' if verb.caller_id else ""
                record = ' record="record-from-answer"' if verb.record else ""
                lines.append(f'    <Dial timeout="{verb.timeout}"{record}{caller_id}>')
                lines.append(f"        <Client>{escape_xml(verb.client)}</Client>")
                lines.append("    </Dial>")
            elif isinstance(verb, Hangup):
                lines.append("    <Hangup/>")
        body = "\n".join(lines)
        return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
{body}
</Response>"""


def empty_twiml() -> str:
    """TwiML acknowledgement with no instructions."""
    return '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'
