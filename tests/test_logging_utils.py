import logging

from deprelay.common import log_error, log_notification, log_relay_decision, log_stage_transition


def test_stage_transition_carries_release_key(caplog):
    with caplog.at_level(logging.INFO, logger="deprelay.audit"):
        log_stage_transition("com.acme:lib:2.3.0@releases", None, "cloning")
        log_stage_transition("com.acme:lib:2.3.0@releases", "pushing", "failed", "PushConflict")

    messages = [r.getMessage() for r in caplog.records]
    assert messages == [
        "[WORKER] com.acme:lib:2.3.0@releases: start -> cloning",
        "[WORKER] com.acme:lib:2.3.0@releases: pushing -> failed (PushConflict)",
    ]


def test_relay_decision_messages(caplog):
    with caplog.at_level(logging.INFO, logger="deprelay.audit"):
        log_relay_decision("k1", True, "matched", "222222222222/eu-west-1")
        log_relay_decision("k2", False, "package format 'npm' not accepted")

    messages = [r.getMessage() for r in caplog.records]
    assert "forwarding to 222222222222/eu-west-1" in messages[0]
    assert "dropped (package format 'npm' not accepted)" in messages[1]


def test_timestamped_files(log_dir):
    log_notification({"detail": {"packageName": "lib"}}, "release")
    log_error("Could not launch worker", "payload")

    names = sorted(p.name.split("-")[0] for p in log_dir.iterdir())
    assert names == ["error", "release"]
    error_file = next(log_dir.glob("error-*.log"))
    assert "Could not launch worker" in error_file.read_text()
