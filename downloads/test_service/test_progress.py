"""
Tests for progress extraction from yt-dlp output.
"""

from django.test import SimpleTestCase

from downloads.service.progress import (
    ErrorEvent,
    ProgressEvent,
    ProgressExtractor,
    clamp_percent,
    parse_line,
)


class ParseLineTest(SimpleTestCase):
    def test_progress_line(self):
        """Test a standard yt-dlp progress line"""
        events = parse_line('[download]  12.3% of 45.67MiB at 2.10MiB/s ETA 00:13')
        self.assertEqual(events, [ProgressEvent(12.3)])

    def test_integer_percent(self):
        self.assertEqual(parse_line('[download] 100% of 1.00MiB'), [ProgressEvent(100.0)])

    def test_percent_is_clamped(self):
        """Test that out of range values are clamped to 100"""
        self.assertEqual(parse_line('[download] 150%'), [ProgressEvent(100.0)])
        self.assertEqual(clamp_percent(-3), 0.0)
        self.assertEqual(clamp_percent('42.5'), 42.5)

    def test_error_line(self):
        """Test that ERROR: lines produce an error event with the line text"""
        events = parse_line('  ERROR: [generic] Unsupported URL  ')
        self.assertEqual(events, [ErrorEvent('ERROR: [generic] Unsupported URL')])

    def test_error_is_case_insensitive(self):
        self.assertEqual(len(parse_line('error: something')), 1)

    def test_unrelated_lines(self):
        """Test that other output yields nothing"""
        self.assertEqual(parse_line('[youtube] abc: Downloading webpage'), [])
        self.assertEqual(parse_line('[download] Destination: file.mp4'), [])
        self.assertEqual(parse_line(''), [])


class ProgressExtractorTest(SimpleTestCase):
    def test_carriage_return_updates(self):
        """Test that in-place \\r rewrites are separate lines"""
        extractor = ProgressExtractor()
        events = extractor.feed(b'\r[download]  10.0% of 1MiB\r[download]  20.0% of 1MiB\r')
        self.assertEqual(events, [ProgressEvent(10.0)])
        # The trailing \r may still turn into \r\n, so the last line waits
        self.assertEqual(extractor.flush(), [ProgressEvent(20.0)])

    def test_split_across_chunks(self):
        """Test that a line split at arbitrary points still parses once"""
        extractor = ProgressExtractor()
        self.assertEqual(extractor.feed(b'[down'), [])
        self.assertEqual(extractor.feed(b'load]  4'), [])
        self.assertEqual(extractor.feed(b'2.0% of 1MiB\n'), [ProgressEvent(42.0)])

    def test_crlf_across_chunks(self):
        """Test that \\r\\n split between chunks is one line break"""
        extractor = ProgressExtractor()
        self.assertEqual(extractor.feed(b'[download] 5.0%\r'), [])
        self.assertEqual(
            extractor.feed(b'\n[download] 6.0%\r\n'), [ProgressEvent(5.0), ProgressEvent(6.0)]
        )

    def test_flush_partial_line(self):
        """Test that a final line without terminator is parsed on flush"""
        extractor = ProgressExtractor()
        self.assertEqual(extractor.feed('ERROR: fatal'), [])
        self.assertEqual(extractor.flush(), [ErrorEvent('ERROR: fatal')])
        self.assertEqual(extractor.flush(), [])

    def test_invalid_utf8(self):
        """Test that undecodable bytes do not break parsing"""
        extractor = ProgressExtractor()
        events = extractor.feed(b'\xff\xfe[download] 33.3%\n')
        self.assertEqual(events, [ProgressEvent(33.3)])

    def test_multibyte_character_split_across_chunks(self):
        """Test that a UTF-8 character cut between chunks decodes intact"""
        data = 'ERROR: vid\u00e9o indisponible\n'.encode('utf-8')
        cut = data.index(b'\xc3') + 1
        extractor = ProgressExtractor()

        self.assertEqual(extractor.feed(data[:cut]), [])
        self.assertEqual(
            extractor.feed(data[cut:]), [ErrorEvent('ERROR: vid\u00e9o indisponible')]
        )

    def test_lines_and_remainder(self):
        """Test that completed lines are returned whole and the rest on remainder"""
        extractor = ProgressExtractor()
        self.assertEqual(extractor.lines(b'first li'), [])
        self.assertEqual(extractor.lines(b'ne\nsecond'), ['first line'])
        self.assertEqual(extractor.remainder(), ['second'])
        self.assertEqual(extractor.remainder(), [])

    def test_order_is_preserved(self):
        """Test that events come out in line order"""
        extractor = ProgressExtractor()
        events = extractor.feed(b'[download] 1%\nERROR: x\n[download] 2%\n')
        self.assertEqual(events, [ProgressEvent(1.0), ErrorEvent('ERROR: x'), ProgressEvent(2.0)])
