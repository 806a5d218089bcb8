"""
Subtitle assembly and overlay filters.

- pack_caption_lines: greedy packer turning tokens into display lines
- build_srt / build_ass: subtitle track files
- build_overlay_filter: drawtext chain for the "Part N" title and subtitle
"""

from reelcutter.models.schemas import CaptionLine, CaptionToken
from reelcutter.utils.color_utils import ffmpeg_color

MAX_LINE_WORDS = 5
MAX_LINE_CHARS = 20


def pack_caption_lines(
    tokens: list[CaptionToken],
    max_words: int = MAX_LINE_WORDS,
    max_chars: int = MAX_LINE_CHARS,
) -> list[CaptionLine]:
    """
    Group tokens into display lines.

    Words accumulate until adding the next one would exceed max_words or
    max_chars (joined with spaces). The closed line ends where the next
    word starts; the final line ends at its last word's end.

    Args:
        tokens: Tokens ordered by start time
        max_words: Word limit per line
        max_chars: Character limit per line

    Returns:
        Lines with non-overlapping, non-decreasing intervals
    """
    lines: list[CaptionLine] = []
    current: list[CaptionToken] = []

    def close(end: float) -> None:
        start = current[0].start
        lines.append(
            CaptionLine(
                start=start,
                end=max(end, start),
                text=" ".join(token.text for token in current),
            )
        )

    for token in tokens:
        if current:
            candidate = " ".join(t.text for t in current) + " " + token.text
            if len(current) + 1 > max_words or len(candidate) > max_chars:
                close(token.start)
                current = []
        current.append(token)

    if current:
        close(current[-1].end)

    return lines


def _split_time(seconds: float, unit: int) -> tuple[int, int, int, int]:
    """Split seconds into (h, m, s, fraction) at 1/unit resolution."""
    total = int(round(max(seconds, 0.0) * unit))
    hours, total = divmod(total, 3600 * unit)
    minutes, total = divmod(total, 60 * unit)
    secs, fraction = divmod(total, unit)
    return hours, minutes, secs, fraction


def format_srt_time(seconds: float) -> str:
    """00:01:02,345"""
    h, m, s, ms = _split_time(seconds, 1000)
    return f"{h:02d}:{m:02d}:{s:02d},{ms:03d}"


def format_ass_time(seconds: float) -> str:
    """0:01:02.35"""
    h, m, s, cs = _split_time(seconds, 100)
    return f"{h:d}:{m:02d}:{s:02d}.{cs:02d}"


def build_srt(lines: list[CaptionLine]) -> str:
    """Render lines as an SRT document."""
    blocks = []
    for index, line in enumerate(lines, start=1):
        blocks.append(
            f"{index}\n"
            f"{format_srt_time(line.start)} --> {format_srt_time(line.end)}\n"
            f"{line.text}\n"
        )
    return "\n".join(blocks)


def _ass_text(text: str) -> str:
    return text.replace("{", "(").replace("}", ")").replace("\n", "\\N")


def build_ass(lines: list[CaptionLine], style: dict | None = None) -> str:
    """
    Render lines as an ASS document for 1080x1920 vertical video.

    Lines are centered on screen (\\an5), white bold text with outline.

    Args:
        lines: Packed caption lines
        style: "captions" section of encoding.yaml (optional overrides)
    """
    style = style or {}
    font = style.get("font", "Roboto")
    font_size = style.get("font_size", 96)
    play_res_x = style.get("play_res_x", 1080)
    play_res_y = style.get("play_res_y", 1920)
    margin_v = style.get("margin_v", 120)

    header = (
        "[Script Info]\n"
        "ScriptType: v4.00+\n"
        f"PlayResX: {play_res_x}\n"
        f"PlayResY: {play_res_y}\n"
        "WrapStyle: 0\n"
        "ScaledBorderAndShadow: yes\n"
        "\n"
        "[V4+ Styles]\n"
        "Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, "
        "OutlineColour, BackColour, Bold, Italic, Underline, StrikeOut, "
        "ScaleX, ScaleY, Spacing, Angle, BorderStyle, Outline, Shadow, "
        "Alignment, MarginL, MarginR, MarginV, Encoding\n"
        f"Style: Default,{font},{font_size},&H00FFFFFF,&H000000FF,&H00000000,"
        f"&H00000000,-1,0,0,0,100,100,0,0,1,2,3,5,50,50,{margin_v},1\n"
        "\n"
        "[Events]\n"
        "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, "
        "Effect, Text\n"
    )

    events = [
        f"Dialogue: 0,{format_ass_time(line.start)},{format_ass_time(line.end)},"
        f"Default,,0,0,0,,{{\\an5}}{_ass_text(line.text)}"
        for line in lines
    ]
    return header + "\n".join(events) + ("\n" if events else "")


def wrap_text(text: str, width: int = 20) -> list[str]:
    """Greedy word wrap; words longer than width get their own line."""
    lines: list[str] = []
    current = ""
    for word in text.split():
        if not current:
            current = word
        elif len(current) + 1 + len(word) <= width:
            current = f"{current} {word}"
        else:
            lines.append(current)
            current = word
    if current:
        lines.append(current)
    return lines


def escape_drawtext(text: str) -> str:
    """Escape text for a single-quoted drawtext value."""
    text = text.replace("\\", "\\\\")
    text = text.replace("'", "’")
    for char in (":", ",", "%"):
        text = text.replace(char, "\\" + char)
    return text


def build_overlay_filter(
    part_number: int,
    subtitle: str | None,
    color: str,
    style: dict | None = None,
) -> str:
    """
    Build the drawtext chain for the segment overlay.

    A boxed "Part N" title is always drawn; the generated subtitle, when
    present, is wrapped and drawn below it in the same box color.

    Args:
        part_number: 1-based segment number
        subtitle: Generated title text or None
        color: Box color as #rrggbb
        style: "overlay" section of encoding.yaml (optional overrides)
    """
    style = style or {}
    box_color = ffmpeg_color(color)

    filters = [
        f"drawtext=text='Part {part_number}':fontcolor=white"
        f":fontsize={style.get('title_font_size', 72)}"
        f":x=(w-text_w)/2:y={style.get('title_y', 250)}"
        f":box=1:boxcolor={box_color}:boxborderw={style.get('title_box_border', 20)}"
    ]

    if subtitle and subtitle.strip():
        base_y = style.get("subtitle_y", 350)
        line_height = style.get("subtitle_line_height", 85)
        for i, line in enumerate(wrap_text(subtitle, style.get("subtitle_wrap", 20))):
            filters.append(
                f"drawtext=text='{escape_drawtext(line)}':fontcolor=white"
                f":fontsize={style.get('subtitle_font_size', 64)}"
                f":x=(w-text_w)/2:y={base_y + i * line_height}"
                f":box=1:boxcolor={box_color}"
                f":boxborderw={style.get('subtitle_box_border', 15)}"
            )

    return ",".join(filters)
