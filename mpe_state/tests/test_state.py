import unittest

from mpe_state.configure import claim_lower_zone
from mpe_state.errors import ChannelBusy, InvalidChannel, InvariantError, NoteMismatch
from mpe_state.events import (
    RPN_MPE_CONFIGURATION,
    RPN_NULL,
    AllNotesOff,
    ChannelPressure,
    NoteOff,
    NoteOn,
    NRPNSelect,
    PitchBend,
    PitchBendSensitivity,
    RPNSelect,
    RPNValue,
    Timbre,
    ZoneReconfigure,
)
from mpe_state.state import MPEState


class TestLowerZoneScenario(unittest.TestCase):
    def test_busy_then_release(self):
        s = MPEState()
        claim_lower_zone(s, 7, 48)
        rec = s.on_note_on(3, 60, 100, ts=0)
        with self.assertRaises(ChannelBusy):
            s.on_note_on(3, 64, 90, ts=1)
        self.assertIs(s.channel_state(3).active_note, rec)
        s.on_note_off(3, 60, 0, ts=2)
        ring = s.channel_state(3).released
        self.assertEqual(len(ring), 1)
        self.assertEqual(ring.newest().note, 60)
        self.assertEqual(ring.newest().release_ts, 2)
        self.assertIsNone(s.channel_state(3).active_note)
        m = s.get_metrics()
        self.assertEqual((m["note_on"], m["note_off"], m["rejected_busy"]), (1, 1, 1))


class TestRPN(unittest.TestCase):
    def setUp(self):
        self.s = MPEState()
        claim_lower_zone(self.s, 7, 48)

    def test_two_step_sensitivity(self):
        self.s.begin_rpn(2, 0)
        self.assertEqual(self.s.pending_rpn(2), 0)
        self.assertTrue(self.s.apply_rpn_value(2, 24, 0))
        self.assertEqual(self.s.channel_state(2).pitch_bend_sensitivity, 24)
        self.assertIsNone(self.s.pending_rpn(2))

    def test_interrupting_selector_discards_pending(self):
        self.s.begin_rpn(2, 0)
        self.s.begin_rpn(2, 5)
        self.assertFalse(self.s.apply_rpn_value(2, 24, 0))
        self.assertEqual(self.s.channel_state(2).pitch_bend_sensitivity, 48)
        self.assertIsNone(self.s.pending_rpn(2))

    def test_nrpn_and_null_abandon_pending(self):
        self.s.begin_rpn(2, 0)
        self.s.begin_nrpn(2, 300)
        self.assertFalse(self.s.apply_rpn_value(2, 24))
        self.s.begin_rpn(2, 0)
        self.s.begin_rpn(2, RPN_NULL)
        self.assertFalse(self.s.apply_rpn_value(2, 24))
        self.assertEqual(self.s.channel_state(2).pitch_bend_sensitivity, 48)

    def test_value_without_selection_is_ignored(self):
        self.assertFalse(self.s.apply_rpn_value(4, 12))
        self.assertEqual(self.s.channel_state(4).pitch_bend_sensitivity, 48)

    def test_member_sensitivity_applies_zone_wide(self):
        s = MPEState()
        s.on_zone_reconfigure(1, 6, 48)
        s.on_zone_reconfigure(16, 7, 48)
        s.on_pitch_bend_sensitivity(1, 1)
        s.on_pitch_bend_sensitivity(8, 3)
        s.on_pitch_bend_sensitivity(4, 12)
        self.assertEqual(s.channel_state(1).pitch_bend_sensitivity, 1)
        self.assertEqual(s.channel_state(8).pitch_bend_sensitivity, 3)
        for ch in range(2, 8):
            self.assertEqual(s.channel_state(ch).pitch_bend_sensitivity, 12)
        self.assertEqual(s.lower_zone.pitch_bend_range, 12)
        self.assertEqual(s.channel_state(11).pitch_bend_sensitivity, 48)
        self.assertEqual(s.channel_state(16).pitch_bend_sensitivity, 2)

    def test_mcm_via_rpn_on_manager(self):
        s = MPEState()
        s.begin_rpn(16, RPN_MPE_CONFIGURATION)
        self.assertTrue(s.apply_rpn_value(16, 5))
        self.assertEqual(list(s.upper_zone.member_channels), [11, 12, 13, 14, 15])

    def test_mcm_on_other_channel_ignored(self):
        s = MPEState()
        s.begin_rpn(5, RPN_MPE_CONFIGURATION)
        self.assertFalse(s.apply_rpn_value(5, 5))
        self.assertFalse(s.is_active)


class TestAllNotesOff(unittest.TestCase):
    def test_releases_notes_but_keeps_controllers(self):
        s = MPEState(clock=lambda: 9.0)
        claim_lower_zone(s, 4)
        s.on_note_on(2, 60, 100)
        s.on_note_on(3, 62, 100)
        s.on_pitch_bend(2, -400)
        s.on_channel_pressure(3, 90)
        released = s.all_notes_off()
        self.assertEqual(sorted(r.note for r in released), [60, 62])
        self.assertEqual(s.active_notes(), [])
        self.assertEqual(s.channel_state(2).pitch_bend, -400)
        self.assertEqual(s.channel_state(3).channel_pressure, 90)
        self.assertEqual(s.channel_state(2).released.newest().release_ts, 9.0)

    def test_single_channel(self):
        s = MPEState()
        s.on_note_on(2, 60, 100)
        s.on_note_on(3, 62, 100)
        s.all_notes_off(2)
        self.assertEqual([r.note for r in s.active_notes()], [62])


class TestDispatch(unittest.TestCase):
    def test_event_stream(self):
        s = MPEState(clock=lambda: 0.0)
        events = [
            ZoneReconfigure(1, 5, 48),
            NoteOn(2, 60, 100, ts=0.0),
            PitchBend(2, 4096),
            ChannelPressure(2, 64),
            Timbre(2, 20),
            PitchBendSensitivity(3, 12),
            RPNSelect(4, 0),
            NRPNSelect(4, 1),
            RPNValue(4, 7),
            NoteOn(2, 61, 90, ts=1.0, force=True),
            NoteOff(2, 61, 10, ts=2.0),
            NoteOn(5, 70, 80, ts=3.0),
            AllNotesOff(None, ts=4.0),
        ]
        for ev in events:
            s.dispatch(ev)
        cs = s.channel_state(2)
        self.assertEqual((cs.pitch_bend, cs.channel_pressure, cs.timbre), (4096, 64, 20))
        self.assertEqual([r.note for r in cs.released], [61, 60])
        self.assertEqual(s.channel_state(4).pitch_bend_sensitivity, 12)
        self.assertEqual(s.active_notes(), [])
        self.assertEqual(s.get_metrics()["events"], len(events))

    def test_zone_events_carry_timestamps(self):
        s = MPEState(clock=lambda: 1000.0)
        s.dispatch(ZoneReconfigure(1, 4, 48, ts=0.0))
        s.dispatch(NoteOn(5, 60, 100, ts=1.0))
        s.dispatch(RPNSelect(1, RPN_MPE_CONFIGURATION))
        s.dispatch(RPNValue(1, 2, 0, ts=2.5))
        self.assertEqual(s.channel_state(5).released.newest().release_ts, 2.5)
        s.dispatch(NoteOn(3, 62, 100, ts=3.0))
        s.dispatch(ZoneReconfigure(1, 0, 48, ts=4.0))
        self.assertEqual(s.channel_state(3).released.newest().release_ts, 4.0)

    def test_dispatch_rejects_unknown_event(self):
        with self.assertRaises(TypeError):
            MPEState().dispatch(object())

    def test_dispatch_propagates_errors(self):
        s = MPEState()
        with self.assertRaises(NoteMismatch):
            s.dispatch(NoteOff(3, 60))
        with self.assertRaises(InvalidChannel):
            s.dispatch(PitchBend(0, 0))
        self.assertEqual(s.get_metrics()["rejected_mismatch"], 1)


class TestInvariants(unittest.TestCase):
    def test_at_most_one_note_per_channel_after_any_sequence(self):
        s = MPEState(released_capacity=2)
        s.on_zone_reconfigure(1, 15, 48)
        for i in range(200):
            ch = 1 + (i * 7) % 16
            note = (i * 13) % 128
            try:
                if i % 3 == 0:
                    s.force_note_on(ch, note, 100, ts=float(i))
                elif i % 3 == 1:
                    s.on_note_on(ch, note, 100, ts=float(i))
                else:
                    held = s.channel_state(ch).active_note
                    if held:
                        s.on_note_off(ch, held.note, 0, ts=float(i))
            except ChannelBusy:
                pass
            if i % 50 == 49:
                s.on_zone_reconfigure(1, (i // 50) * 3, 48, ts=float(i))
            per_channel = {}
            for rec in s.active_notes():
                per_channel[rec.channel] = per_channel.get(rec.channel, 0) + 1
            self.assertTrue(all(n == 1 for n in per_channel.values()))
            self.assertTrue(all(len(c.released) <= 2 for c in s.channels.values()))

    def test_corruption_is_detected(self):
        s = MPEState()
        rec = s.on_note_on(3, 60, 100, ts=0.0)
        s.channels[4].active_note = rec
        with self.assertRaises(InvariantError):
            s.on_pitch_bend(5, 0)

    def test_independent_instances(self):
        a, b = MPEState(), MPEState()
        claim_lower_zone(a, 3)
        a.on_note_on(2, 60, 100)
        self.assertFalse(b.is_active)
        self.assertEqual(b.active_notes(), [])


class TestSnapshot(unittest.TestCase):
    def test_snapshot_shape(self):
        s = MPEState(clock=lambda: 1.5)
        claim_lower_zone(s, 2)
        s.on_note_on(2, 60, 100)
        snap = s.get_state_snapshot()
        self.assertEqual(snap["zones"][0]["memberChannels"], [2, 3])
        self.assertFalse(snap["zones"][1]["active"])
        self.assertEqual(snap["channels"][2]["role"], "member")
        self.assertEqual(snap["channels"][2]["activeNote"]["note"], 60)
        self.assertEqual(snap["activeNotes"][0]["startTs"], 1.5)


if __name__ == "__main__":
    unittest.main()
