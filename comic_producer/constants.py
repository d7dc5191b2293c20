"""All magic numbers and configuration constants."""

DEFAULT_MAX_PANELS_PER_PAGE = 4     # panels per storyboard page when unset
MIN_PANELS_PER_PAGE = 1
SUMMARY_ATTEMPTS = 3                # storyboard synthesis attempts per chapter
TTS_RETRY_COUNT = 3                 # max attempts per audio segment (rate limits only)
TTS_RETRY_BASE_DELAY = 1.0          # seconds, multiplied by the attempt number
MAX_CONCURRENT_PAGES = 4            # page tasks in flight per chapter (0 = unbounded)
MAX_CONCURRENT_AUDIO = 8            # audio tasks in flight per chapter (0 = unbounded)
OPENAI_TIMEOUT = 300.0              # seconds per generative API call
DEFAULT_BASE_URL = "https://openai.qiniu.com/v1"
DEFAULT_IMAGE_MODEL = "gemini-2.5-flash-image"
DEFAULT_LANGUAGE_MODEL = "deepseek/deepseek-v3.1-terminus"
DEFAULT_NOVEL_TITLE = "未知小说"
DEFAULT_IMAGE_STYLE = "卡通风格，"
DEFAULT_VOICE_LOCALE = "zh-"        # edge-tts locale prefix for the voice catalogue
NARRATOR_VOICE = "zh-CN-YunxiNeural"
OUTPUT_DIR = "output"
CHARACTERS_DIR = "characters"
STORYBOARD_FILE = "storyboard.json"
MANIFEST_FILE = "manifest.json"
SLIDES_FILE = "slides.json"
ZERO_WIDTH_CHARS = "\u200b\u200c\u200d\u2060\ufeff"   # stripped from heading candidates
VERSION = "0.1.0"

# Built-in voice catalogue used when the speech service cannot list voices
VOICE_POOL = [
    ("晓晓 (female, warm)", "zh-CN-XiaoxiaoNeural"),
    ("晓伊 (female, lively)", "zh-CN-XiaoyiNeural"),
    ("云希 (male, young)", "zh-CN-YunxiNeural"),
    ("云健 (male, sports)", "zh-CN-YunjianNeural"),
    ("云扬 (male, news)", "zh-CN-YunyangNeural"),
    ("云夏 (male, child)", "zh-CN-YunxiaNeural"),
    ("晓北 (female, northeastern)", "zh-CN-liaoning-XiaobeiNeural"),
    ("晓妮 (female, shaanxi)", "zh-CN-shaanxi-XiaoniNeural"),
]
