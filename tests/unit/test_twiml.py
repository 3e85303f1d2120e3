"""Unit tests for call-control directive rendering."""
from app.services.telephony.twiml import (
    CallDirective,
    ConnectAgent,
    Hangup,
    Pause,
    Say,
    empty_twiml,
    escape_xml,
)


class TestTwiml:
    def test_escape_xml(self):
        assert escape_xml('Tom & Jerry\'s <"deli">') == "Tom &amp; Jerry&apos;s &lt;&quot;deli&quot;&gt;"

    def test_renders_verbs_in_order(self):
        directive = CallDirective(
            verbs=[
                Say(text="Welcome & hello", language="en-US"),
                Pause(seconds=1),
                ConnectAgent(client="agent-7", timeout=20),
                Hangup(),
            ]
        )

        twiml = directive.to_twiml()

        assert twiml.startswith('<?xml version="1.0" encoding="UTF-8"?>')
        assert '<Say language="en-US">Welcome &amp; hello</Say>' in twiml
        assert '<Pause length="1"/>' in twiml
        assert '<Dial timeout="20" record="record-from-answer">' in twiml
        assert "<Client>agent-7</Client>" in twiml
        assert twiml.index("<Say") < twiml.index("<Dial") < twiml.index("<Hangup/>")

    def test_flags(self):
        directive = CallDirective(verbs=[Say(text="Bye"), Hangup()])
        assert directive.hangs_up
        assert not directive.connects_agent

    def test_empty_twiml(self):
        assert empty_twiml() == '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'
