import copy
import itertools

import pytest


class FakeTimer:
    def __init__(self, due, callback):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Manual clock in milliseconds; advance() fires due timers in order."""

    def __init__(self):
        self.now = 0
        self.timers = []

    def call_later(self, delay_ms, callback):
        timer = FakeTimer(self.now + delay_ms, callback)
        self.timers.append(timer)
        return timer

    def pending(self):
        return [t for t in self.timers if not t.cancelled]

    def advance(self, ms):
        target = self.now + ms
        while True:
            due = [t for t in self.pending() if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.timers.remove(timer)
            self.now = timer.due
            timer.callback()
        self.now = target


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def id_factory():
    counter = itertools.count(1)
    return lambda: f"gen{next(counter)}"


SAMPLE_TREE = {
    "id": "root",
    "type": "root",
    "label": "Start",
    "children": [
        {
            "id": "g1",
            "type": "group",
            "label": "Hair",
            "children": [
                {
                    "id": "s1",
                    "type": "service",
                    "label": "Cut",
                    "description": "Wash and cut",
                    "duration": 30,
                    "price": 25,
                    "assignedEmployeeIds": ["e1"],
                    "additionalQuestions": [
                        {"id": "q-len", "name": "length", "label": "Hair length", "type": "dropdown",
                         "options": [{"label": "Short", "value": "short"}, {"label": "Long", "value": "long"}]},
                    ],
                },
            ],
        },
        {
            "id": "s2",
            "type": "service",
            "label": "Consultation",
            "description": "Talk it through",
            "duration": 15,
            "price": 0,
            "assignedEmployeeIds": ["e2"],
            "additionalQuestions": [],
        },
    ],
}

SAMPLE_WIRE = {
    "id": "form-1",
    "internalName": "Salon booking",
    "slug": "salon-booking",
    "serviceTree": SAMPLE_TREE,
    "baseQuestions": [
        {"id": "bq1", "name": "email", "label": "Email", "type": "short-text", "isRequired": True},
    ],
    "theme": "light",
    "primaryColor": "#336699",
}


@pytest.fixture
def sample_tree():
    return copy.deepcopy(SAMPLE_TREE)


@pytest.fixture
def sample_wire():
    return copy.deepcopy(SAMPLE_WIRE)
