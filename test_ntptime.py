import time
import unittest

from ntptime import (
    LocalTime,
    NtpTimestamp,
    TIME1970,
    apply_offset,
    fraction_to_usec,
    from_ntp,
    read_local_clock,
    to_milliseconds,
    to_ntp,
    usec_to_fraction,
)


class TestFixedPoint(unittest.TestCase):
    def test_epoch(self):
        self.assertEqual(to_ntp(LocalTime(0, 0)), NtpTimestamp(2208988800, 0))
        self.assertEqual(from_ntp(NtpTimestamp(2208988800, 0)), LocalTime(0, 0))

    def test_coarse_is_uint32(self):
        # 2036-02-07T06:28:16Z, first second of NTP era 1
        self.assertEqual(to_ntp(LocalTime(2085978496, 0)).coarse, 0)

    def test_fraction_fits_32_bits(self):
        self.assertEqual(usec_to_fraction(0), 0)
        self.assertLess(usec_to_fraction(999999), 1 << 32)
        self.assertEqual(usec_to_fraction(999999), 4294962990)

    def test_fraction_close_to_exact(self):
        for usec in range(0, 1000000, 997):
            with self.subTest(usec=usec):
                exact = usec * (1 << 32) // 1000000
                self.assertLessEqual(abs(exact - usec_to_fraction(usec)), 12)

    def test_round_trip(self):
        """from_ntp(to_ntp(t)) stays within a microsecond"""
        for usec in list(range(0, 1000000, 331)) + [1, 999, 500000, 999998, 999999]:
            with self.subTest(usec=usec):
                local = LocalTime(1704067200, usec * 1000)
                back = from_ntp(to_ntp(local))
                self.assertEqual(back.seconds, local.seconds)
                self.assertLessEqual(abs(back.nanoseconds - local.nanoseconds), 1000)

    def test_round_trip_exact_for_whole_microseconds(self):
        for usec in (0, 1, 100000, 123456, 999999):
            with self.subTest(usec=usec):
                local = LocalTime(42, usec * 1000)
                self.assertEqual(from_ntp(to_ntp(local)), local)

    def test_sub_microsecond_truncated(self):
        self.assertEqual(to_ntp(LocalTime(5, 1999)), to_ntp(LocalTime(5, 1000)))

    def test_fraction_to_usec_range(self):
        self.assertEqual(fraction_to_usec(0), 0)
        self.assertEqual(fraction_to_usec(0x80000000), 500000)
        self.assertEqual(fraction_to_usec(0xFFFFFFFF), 999999)

    def test_legacy_inverse(self):
        self.assertEqual(fraction_to_usec(0, legacy=True), 0)
        self.assertEqual(fraction_to_usec(0x80000000, legacy=True), 500000)
        self.assertEqual(fraction_to_usec(0xFFFFFFFF, legacy=True), 999999)
        # correction term moves in 759us steps
        self.assertEqual(fraction_to_usec(usec_to_fraction(100000), legacy=True), 100303)
        self.assertEqual(
            from_ntp(NtpTimestamp(TIME1970, 0x80000000), legacy=True),
            LocalTime(0, 500000000),
        )

    def test_before_1970(self):
        self.assertEqual(from_ntp(NtpTimestamp(0, 0)), LocalTime(-TIME1970, 0))

    def test_read_local_clock(self):
        before = time.time()
        now = read_local_clock()
        after = time.time()
        self.assertGreaterEqual(now.nanoseconds, 0)
        self.assertLess(now.nanoseconds, 1000000000)
        self.assertLessEqual(int(before), now.seconds)
        self.assertLessEqual(now.seconds, int(after) + 1)


class TestMilliseconds(unittest.TestCase):
    def test_truncates(self):
        self.assertEqual(to_milliseconds(LocalTime(100, 0)), 100000)
        self.assertEqual(to_milliseconds(LocalTime(100, 999999)), 100000)
        self.assertEqual(to_milliseconds(LocalTime(100, 250999999)), 100250)
        self.assertEqual(to_milliseconds(LocalTime(-1, 500000000)), -500)


class TestApplyOffset(unittest.TestCase):
    def test_zero(self):
        t = LocalTime(10, 500000000)
        self.assertEqual(apply_offset(t, 0), t)

    def test_carry(self):
        self.assertEqual(apply_offset(LocalTime(10, 500000000), 700), LocalTime(11, 200000000))
        self.assertEqual(apply_offset(LocalTime(10, 0), 999), LocalTime(10, 999000000))
        self.assertEqual(apply_offset(LocalTime(10, 1000000), 999), LocalTime(11, 0))

    def test_borrow(self):
        self.assertEqual(apply_offset(LocalTime(11, 200000000), -700), LocalTime(10, 500000000))
        self.assertEqual(apply_offset(LocalTime(10, 700000000), -700), LocalTime(10, 0))
        self.assertEqual(apply_offset(LocalTime(10, 0), -1), LocalTime(9, 999000000))

    def test_whole_seconds(self):
        self.assertEqual(apply_offset(LocalTime(10, 123), 3000), LocalTime(13, 123))
        self.assertEqual(apply_offset(LocalTime(10, 123), -3000), LocalTime(7, 123))

    def test_large_offsets(self):
        self.assertEqual(apply_offset(LocalTime(10, 100000000), -86400250), LocalTime(-86391, 850000000))
        self.assertEqual(apply_offset(LocalTime(10, 900000000), 86400250), LocalTime(86411, 150000000))

    def test_inverse(self):
        """apply_offset(apply_offset(t, d), -d) == t"""
        times = [LocalTime(0, 0), LocalTime(10, 500000000), LocalTime(1704067200, 999999999),
                 LocalTime(-5, 1000)]
        offsets = [0, 1, -1, 700, -700, 999, -999, 1000, -1000, 1001, -1001, 123456789, -123456789]
        for t in times:
            for d in offsets:
                with self.subTest(t=t, d=d):
                    moved = apply_offset(t, d)
                    self.assertGreaterEqual(moved.nanoseconds, 0)
                    self.assertLess(moved.nanoseconds, 1000000000)
                    self.assertEqual(apply_offset(moved, -d), t)


if __name__ == "__main__":
    unittest.main()
