import unittest

from arbitration import EventLog, arbitrate, resolve_specific, should_run_generic
from detectors import EventType, FrequencyRange, NoiseEvent


def event(kind, confidence, timestamp=0.0):
    ranges = {
        EventType.FOOTSTEP: FrequencyRange(20, 300),
        EventType.FRICTION: FrequencyRange(100, 1000),
        EventType.GENERIC: FrequencyRange(800, 1200),
    }
    return NoiseEvent(kind, timestamp, confidence, ranges[kind])


class TestArbitration(unittest.TestCase):
    def test_higher_confidence_wins_conflict(self):
        footstep = event(EventType.FOOTSTEP, 0.8)
        friction = event(EventType.FRICTION, 0.6)
        self.assertEqual(arbitrate(footstep, friction), [footstep])

        footstep = event(EventType.FOOTSTEP, 0.4)
        self.assertEqual(arbitrate(footstep, friction), [friction])

    def test_tie_keeps_footstep(self):
        footstep = event(EventType.FOOTSTEP, 0.7)
        friction = event(EventType.FRICTION, 0.7)
        kept_footstep, kept_friction, dropped = resolve_specific(footstep, friction)
        self.assertIs(kept_footstep, footstep)
        self.assertIsNone(kept_friction)
        self.assertIs(dropped, friction)

    def test_no_conflict_nothing_dropped(self):
        footstep = event(EventType.FOOTSTEP, 0.7)
        self.assertEqual(resolve_specific(footstep, None), (footstep, None, None))
        self.assertEqual(resolve_specific(None, None), (None, None, None))

    def test_generic_only_as_fallback(self):
        generic = event(EventType.GENERIC, 0.9)
        footstep = event(EventType.FOOTSTEP, 0.3)

        self.assertEqual(arbitrate(None, None, generic), [generic])
        self.assertEqual(arbitrate(footstep, None, generic), [footstep])
        self.assertEqual(arbitrate(None, None, generic, friction_sustaining=True), [])

    def test_should_run_generic(self):
        self.assertTrue(should_run_generic(None, None, False))
        self.assertFalse(should_run_generic(None, None, True))
        self.assertFalse(should_run_generic(event(EventType.FOOTSTEP, 0.5), None, False))
        self.assertFalse(should_run_generic(None, event(EventType.FRICTION, 0.5), False))

    def test_empty_frame(self):
        self.assertEqual(arbitrate(None, None), [])


class TestEventLog(unittest.TestCase):
    def test_evicts_oldest(self):
        log = EventLog(capacity=3)
        events = [event(EventType.GENERIC, 0.5, timestamp=float(t)) for t in range(5)]
        log.extend(events)
        self.assertEqual(len(log), 3)
        self.assertEqual([e.timestamp for e in log], [2.0, 3.0, 4.0])

    def test_recent(self):
        log = EventLog(capacity=50)
        for t in range(4):
            log.append(event(EventType.FOOTSTEP, 0.5, timestamp=float(t)))
        self.assertEqual([e.timestamp for e in log.recent(2)], [2.0, 3.0])
        self.assertEqual(log.recent(0), [])
        self.assertEqual(len(log.recent()), 4)

    def test_default_capacity_and_clear(self):
        log = EventLog()
        log.extend(event(EventType.GENERIC, 0.5, timestamp=float(t)) for t in range(60))
        self.assertEqual(len(log), 50)
        self.assertEqual(log.recent(1)[0].timestamp, 59.0)
        log.clear()
        self.assertEqual(len(log), 0)


if __name__ == "__main__":
    unittest.main()
