import unittest

from icswatch.callbacks import describe_event, log_events
from icswatch.models import Created, Deleted, Occurrence, Property, PropertyChange, Updated


class LogEventsTests(unittest.TestCase):
    def test_logs_header_and_each_event(self) -> None:
        occurrence = Occurrence((Property("UID", "a"), Property("SUMMARY", "Lecture")))
        events = [
            Created(uid="a", occurrence=occurrence),
            Updated(uid="a", occurrence=occurrence, changes=(PropertyChange(key="SUMMARY"),)),
            Deleted(uid="b", occurrence=occurrence),
        ]
        with self.assertLogs("icswatch.callbacks", level="INFO") as logs:
            log_events("Lectures", "Winter term", events)
        self.assertEqual(len(logs.records), 4)
        self.assertEqual(logs.records[0].getMessage(), "Captured changes of Lectures (Winter term):")
        self.assertEqual(logs.records[2].getMessage(), "Updated a: SUMMARY")

    def test_unnamed_calendar(self) -> None:
        with self.assertLogs("icswatch.callbacks", level="INFO") as logs:
            log_events(None, None, [])
        self.assertEqual(logs.records[0].getMessage(), "Captured changes of Unnamed Calendar:")

    def test_describe_created(self) -> None:
        occurrence = Occurrence((Property("SUMMARY", "Exam"),))
        self.assertEqual(describe_event(Created(uid="x", occurrence=occurrence)), "Created x: 'Exam'")


if __name__ == "__main__":
    unittest.main()
