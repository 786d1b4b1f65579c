import unittest

from mpe_state.channel import DEFAULT_TIMBRE
from mpe_state.errors import InvalidChannel, OutOfRange, ZoneOverlap
from mpe_state.state import MPEState


class TestZoneConfigure(unittest.TestCase):
    def setUp(self):
        self.state = MPEState(clock=lambda: 0.0)

    def test_lower_zone_layout(self):
        z = self.state.on_zone_reconfigure(1, 7, 48)
        self.assertEqual(list(z.member_channels), list(range(2, 9)))
        self.assertEqual(self.state.channel_role(1), "manager")
        self.assertEqual(self.state.channel_role(5), "member")
        self.assertEqual(self.state.channel_role(9), "conventional")
        self.assertEqual(self.state.channel_state(5).pitch_bend_sensitivity, 48)
        self.assertEqual(self.state.channel_state(1).pitch_bend_sensitivity, 2)
        self.assertIs(self.state.zone_of(8), z)
        self.assertIsNone(self.state.zone_of(9))

    def test_upper_zone_layout(self):
        z = self.state.on_zone_reconfigure(16, 3, 24)
        self.assertEqual(list(z.member_channels), [13, 14, 15])
        self.assertTrue(self.state.is_member_channel(13))
        self.assertFalse(self.state.is_member_channel(16))
        self.assertTrue(self.state.is_manager_channel(16))
        self.assertEqual(self.state.channel_state(14).pitch_bend_sensitivity, 24)

    def test_shrink_releases_and_resets_evicted_channels(self):
        s = self.state
        s.on_zone_reconfigure(1, 7, 48)
        for i, ch in enumerate(range(2, 9)):
            s.on_note_on(ch, 60 + i, 100, ts=1.0)
            s.on_pitch_bend(ch, 1000 + i)
            s.on_timbre(ch, 10 + i)
        s.on_zone_reconfigure(1, 3, 48, ts=5.0)
        for ch in range(5, 9):
            cs = s.channel_state(ch)
            self.assertIsNone(cs.active_note)
            self.assertEqual(len(cs.released), 1)
            self.assertEqual(cs.released.newest().release_ts, 5.0)
            self.assertEqual((cs.pitch_bend, cs.timbre, cs.pitch_bend_sensitivity), (0, DEFAULT_TIMBRE, 2))
            self.assertEqual(s.channel_role(ch), "conventional")
        for i, ch in enumerate(range(2, 5)):
            cs = s.channel_state(ch)
            self.assertEqual(cs.active_note.note, 60 + i)
            self.assertEqual(cs.pitch_bend, 1000 + i)
            self.assertEqual(cs.timbre, 10 + i)
            self.assertEqual(len(cs.released), 0)

    def test_growing_applies_member_defaults_to_new_channels_only(self):
        s = self.state
        s.on_zone_reconfigure(1, 3, 48)
        s.on_pitch_bend(3, 777)
        s.on_pitch_bend_sensitivity(9, 5)
        s.on_zone_reconfigure(1, 9, 36)
        self.assertEqual(s.channel_state(3).pitch_bend, 777)
        self.assertEqual(s.channel_state(3).pitch_bend_sensitivity, 48)
        self.assertEqual(s.channel_state(9).pitch_bend_sensitivity, 36)
        self.assertEqual(s.lower_zone.pitch_bend_range, 36)

    def test_overlap_rejected_atomically(self):
        s = self.state
        s.on_zone_reconfigure(1, 10, 48)
        s.on_zone_reconfigure(16, 4, 48)
        s.on_note_on(12, 60, 100)
        with self.assertRaises(ZoneOverlap):
            s.on_zone_reconfigure(1, 12, 48)
        self.assertEqual(s.lower_zone.member_count, 10)
        self.assertEqual(s.upper_zone.member_count, 4)
        self.assertEqual(s.channel_state(12).active_note.note, 60)

    def test_full_lower_zone_blocks_upper(self):
        s = self.state
        s.on_zone_reconfigure(1, 15, 48)
        with self.assertRaises(ZoneOverlap):
            s.on_zone_reconfigure(16, 1, 48)

    def test_invalid_arguments(self):
        with self.assertRaises(OutOfRange):
            self.state.on_zone_reconfigure(1, 16, 48)
        with self.assertRaises(OutOfRange):
            self.state.on_zone_reconfigure(1, 4, 97)
        with self.assertRaises(InvalidChannel):
            self.state.on_zone_reconfigure(5, 4, 48)
        self.assertFalse(self.state.is_active)

    def test_deactivate_releases_manager_too(self):
        s = self.state
        s.on_zone_reconfigure(1, 4, 48)
        s.on_note_on(1, 40, 100)
        s.on_note_on(2, 60, 100)
        s.on_zone_reconfigure(1, 0, 48)
        self.assertFalse(s.is_active)
        self.assertEqual(s.zones(), ())
        self.assertEqual(s.active_notes(), [])
        self.assertEqual(s.channel_role(1), "conventional")

    def test_zone_objects_are_stable(self):
        s = self.state
        lower = s.lower_zone
        ch5 = s.channel_state(5)
        s.on_zone_reconfigure(1, 7, 48)
        s.on_zone_reconfigure(1, 2, 48)
        self.assertIs(s.lower_zone, lower)
        self.assertIs(s.channel_state(5), ch5)


class TestMPEConfigurationMessage(unittest.TestCase):
    """Wire-level zone messages make the other zone give way."""

    def test_new_zone_shrinks_other(self):
        s = MPEState()
        s.on_mpe_configuration(1, 15)
        s.on_mpe_configuration(16, 4)
        self.assertEqual(s.lower_zone.member_count, 10)
        self.assertEqual(list(s.upper_zone.member_channels), [12, 13, 14, 15])

    def test_other_zone_deactivated_when_no_room(self):
        s = MPEState()
        s.on_mpe_configuration(1, 10)
        s.on_mpe_configuration(16, 4)
        s.on_mpe_configuration(1, 14)
        self.assertFalse(s.upper_zone.is_active)
        self.assertEqual(s.channel_role(16), "conventional")
        self.assertEqual(s.lower_zone.member_count, 14)

    def test_deactivation(self):
        s = MPEState()
        s.on_mpe_configuration(1, 10)
        s.on_mpe_configuration(16, 4)
        self.assertTrue(s.is_active)
        s.on_mpe_configuration(1, 0)
        s.on_mpe_configuration(16, 0)
        self.assertFalse(s.is_active)

    def test_oversized_member_bend_range_does_not_break_reconfiguration(self):
        s = MPEState()
        s.on_mpe_configuration(1, 10)
        s.on_mpe_configuration(16, 4)
        s.on_pitch_bend_sensitivity(3, 100)
        self.assertEqual(s.channel_state(3).pitch_bend_sensitivity, 100)
        self.assertEqual(s.lower_zone.pitch_bend_range, 96)
        s.on_mpe_configuration(1, 14)
        self.assertFalse(s.upper_zone.is_active)
        self.assertEqual(s.lower_zone.member_count, 14)
        self.assertEqual(s.channel_state(15).pitch_bend_sensitivity, 96)

    def test_member_count_clamped(self):
        s = MPEState()
        s.on_mpe_configuration(16, 20)
        self.assertEqual(s.upper_zone.member_count, 15)
        self.assertEqual(s.get_metrics()["clamped"], 1)


if __name__ == "__main__":
    unittest.main()
