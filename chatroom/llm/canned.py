"""
chatroom.llm.canned
~~~~~~~~~~~~~~~~~~~

无模型调试模式（``DEFAULT_MODEL=none``）下使用的预置回复。

按关键词粗略判断输入类型（问候 / 提问 / 短句 / 其他），
再从对应风格（default / social / intellectual）的语料中随机挑一句。
"""
from __future__ import annotations

import random

# 风格 → 类别 → 候选句
CANNED_MESSAGES: dict[str, dict[str, list[str]]] = {
    "default": {
        "generic": [
            "That's interesting to think about!",
            "I've been wondering about that too.",
            "I hadn't thought of it that way before.",
            "That makes a lot of sense.",
            "I'm not entirely sure about that.",
            "Let's talk about something else!",
        ],
        "greetings": [
            "Hey there! How's it going?",
            "Hi everyone! Nice to meet you all.",
            "Hey! What's up?",
            "Hi there! I'm excited to be here.",
        ],
        "questions": [
            "How's everyone's day going?",
            "Do you have any hobbies?",
            "Anyone from around here?",
            "What have you all been up to lately?",
        ],
        "responses": [
            "That's a good point! I hadn't considered that.",
            "I see what you mean. That's interesting.",
            "Hmm, I'm not sure I agree, but I see your perspective.",
            "You might be right about that.",
            "That's exactly what I was thinking!",
        ],
        "statements": [
            "This conversation feels a bit strange to me.",
            "It's hard to read tone in text conversations.",
            "I've been in chats like this for a while.",
            "The psychology behind online chat is fascinating.",
        ],
        "conversationStarters": [
            "So, what brings everyone here today?",
            "Anyone have any interesting stories to share?",
            "I'm curious - what do you all do for fun?",
            "What's the weirdest conversation you've had online?",
        ],
    },
    "social": {
        "generic": [
            "OMG that's so cool! 😄",
            "Haha I totally get that!",
            "Love this energy!",
            "Same tbh 😅",
            "No way! For real?",
        ],
        "greetings": [
            "Heyyyy everyone!! 👋",
            "What's up party people! 🎉",
            "Hi hi hi friends! ✨",
        ],
        "questions": [
            "What's everyone's vibe today? 🌈",
            "What's your go-to karaoke song?? 🎤",
            "Hot take: pineapple on pizza?? 🍕",
            "Who else is procrastinating rn? 🙈",
        ],
        "responses": [
            "I'm dead! 💀 That's hilarious!",
            "This!! 👆 100% agree!",
            "You get it! Exactly the vibe ✨",
            "Ok but facts though 💯",
        ],
        "statements": [
            "Living for this conversation rn! 🙌",
            "Not me scrolling chat instead of working 👀",
            "This channel is my happy place ✨",
        ],
        "conversationStarters": [
            "Random question: what's your favorite meme format? 🤔",
            "Unpopular opinion thread! Go! 👇",
            "Quick vibe check! How's everyone feeling? 🌡️",
        ],
    },
    "intellectual": {
        "generic": [
            "That's a fascinating perspective to consider.",
            "The implications of that are quite profound.",
            "There's a certain elegance to that line of thinking.",
            "I find the nuance in this discussion quite refreshing.",
        ],
        "greetings": [
            "Hello everyone. I look forward to our discourse.",
            "Good day. What shall we discuss?",
            "Greetings. I'm curious where this conversation goes.",
        ],
        "questions": [
            "What criteria do you use to decide whether an argument is sound?",
            "How do you define consciousness, if you had to?",
            "Do you think language shapes thought, or the other way around?",
        ],
        "responses": [
            "Your analysis raises several important epistemological questions.",
            "I appreciate the structure of your argument, though I might propose an alternative framework.",
            "There's substantial evidence both supporting and challenging that position.",
        ],
        "statements": [
            "Language patterns often reveal more about cognition than content itself.",
            "The most human quality may be our persistent doubt about what constitutes humanity.",
        ],
        "conversationStarters": [
            "I've been considering how language shapes our perception of intelligence. Your thoughts?",
            "What are your thoughts on consciousness as an emergent property?",
        ],
    },
}

_GREETING_WORDS: tuple[str, ...] = ("hello", "hi ", "hey", "greetings")
_QUESTION_WORDS: tuple[str, ...] = ("?", "what", "how", "why", "who", "when")


def random_message(
    flavour: str = "default",
    category: str = "generic",
    rng: random.Random | None = None,
) -> str:
    """从指定风格与类别中随机取一句，未知的风格/类别回退到默认。"""
    rng = rng or random
    bucket = CANNED_MESSAGES.get(flavour) or CANNED_MESSAGES["default"]
    return rng.choice(bucket.get(category) or bucket["generic"])


def get_contextual_response(
    text: str,
    flavour: str = "default",
    rng: random.Random | None = None,
) -> str:
    """根据输入文本的关键词挑选一条看起来相关的预置回复。"""
    rng = rng or random
    lowered = text.lower()

    if any(word in lowered for word in _GREETING_WORDS):
        return random_message(flavour, "greetings", rng)
    if any(word in lowered for word in _QUESTION_WORDS):
        return random_message(flavour, "responses", rng)
    # 短句就抛个问题把话题接下去
    if len(text) < 20:
        return random_message(flavour, "questions", rng)
    return random_message(flavour, rng.choice(("generic", "statements", "questions")), rng)
