"""
shuffle.py
======================

問題順のシャッフルと、選択肢のシャッフル＋ラベル付け直しを行うモジュール。

要件:
- 問題順はシード付き乱数 (mulberry32) で再現可能に並べ替える
  （他言語の実装と同じシードで同じ順番になること）
- 選択肢はシード無しの乱数で並べ替え、ラベルは常に A, B, C... と振り直す
- correct_answer は並べ替え後のラベルへ追従させる
- translations の各言語の選択肢にも「同じ」並べ替えを適用する
- 壊れたデータ（正解ラベルが見つからない、言語ごとの選択肢数が違う）では
  例外を出さずにできる範囲で処理する
"""

from __future__ import annotations

import logging
import random
import re
import struct
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar, Union

from .models import Option, Question, label_for

logger = logging.getLogger(__name__)

T = TypeVar("T")
RandomFn = Callable[[], float]
Seed = Union[int, str, None]

MASK32 = 0xFFFFFFFF
NO_SHUFFLE_SEED = "-1"

_DEC_DIGITS_RE = re.compile(r"[0-9]+")
_HEX_DIGITS_RE = re.compile(r"[0-9a-fA-F]+")


# ----------------------------------------------------------------------
#  シード付き乱数
# ----------------------------------------------------------------------
def mulberry32(seed: int) -> RandomFn:
    """
    mulberry32 乱数生成器を返す。戻り値の関数は呼ぶたびに [0, 1) の float を返す。

    32bit の掛け算・シフトを JavaScript の Math.imul / >>> と同じ結果にするため、
    すべての演算を 2^32 で丸める。
    """
    state = seed & MASK32

    def _next() -> float:
        nonlocal state
        state = (state + 0x6D2B79F5) & MASK32
        t = state
        t = ((t ^ (t >> 15)) * (t | 1)) & MASK32
        t ^= (t + (((t ^ (t >> 7)) * (t | 61)) & MASK32)) & MASK32
        return ((t ^ (t >> 14)) & MASK32) / 4294967296

    return _next


def normalize_seed(seed: Seed) -> Optional[int]:
    """
    ユーザー入力のシードを整数にする。None は「シャッフルしない」。

    - None / "" / -1 / ちょうど "-1" → None
    - 文字列は JavaScript の parseInt と同じ規則で先頭の整数を読む
      ("12abc" → 12, "0x10" → 16, " -1" → -1)
    - 整数として読めない文字列は UTF-16 コード単位の合計 ("abc" → 294)
    """
    if seed is None or isinstance(seed, bool):
        return None
    if isinstance(seed, int):
        return None if seed == -1 else seed

    text = str(seed)
    if text == "" or text == NO_SHUFFLE_SEED:
        return None

    value = _parse_int(text)
    if value is not None:
        return value

    units = text.encode("utf-16-le", "surrogatepass")
    return sum(struct.unpack(f"<{len(units) // 2}H", units))


def _parse_int(text: str) -> Optional[int]:
    """parseInt(text) 相当。NaN になる場合は None。"""
    body = text.lstrip()
    sign = 1
    if body.startswith(("+", "-")):
        sign = -1 if body[0] == "-" else 1
        body = body[1:]

    if body[:2] in ("0x", "0X"):
        m = _HEX_DIGITS_RE.match(body, 2)
        return sign * int(m.group(0), 16) if m else None

    m = _DEC_DIGITS_RE.match(body)
    return sign * int(m.group(0)) if m else None


# ----------------------------------------------------------------------
#  Fisher-Yates
# ----------------------------------------------------------------------
def shuffle_array(items: List[T], random_fn: RandomFn = random.random) -> List[T]:
    """リストをその場で並べ替えて返す。"""
    for i in range(len(items) - 1, 0, -1):
        j = int(random_fn() * (i + 1))
        items[i], items[j] = items[j], items[i]
    return items


def make_permutation(n: int, random_fn: RandomFn = random.random) -> List[int]:
    """新しい位置 → 元の位置 の対応表 (長さ n) を作る。"""
    return shuffle_array(list(range(n)), random_fn)


# ----------------------------------------------------------------------
#  選択肢の並べ替えとラベル付け直し
# ----------------------------------------------------------------------
def relabel_options(
    options: Sequence[Option],
    permutation: Sequence[int],
) -> Tuple[List[Option], Dict[str, str]]:
    """
    permutation に従って選択肢を並べ替え、A, B, C... と振り直す。

    戻り値:
        (新しい選択肢リスト, 旧ラベル → 新ラベル の対応)
    """
    new_options = [
        Option(label=label_for(new_pos), text=options[orig].text)
        for new_pos, orig in enumerate(permutation)
    ]

    new_pos_of = {orig: new_pos for new_pos, orig in enumerate(permutation)}
    label_map: Dict[str, str] = {}
    for orig, opt in enumerate(options):
        # 同じラベルが重複している場合は最初のものを優先
        if opt.label in label_map or orig not in new_pos_of:
            continue
        label_map[opt.label] = label_for(new_pos_of[orig])

    return new_options, label_map


def sync_translations(question: Question, permutation: Sequence[int]) -> None:
    """
    ベース言語と同じ permutation を translations の各言語へ適用する。
    選択肢数が合わない言語はデータ不整合とみなしてそのままにする。
    """
    for lang, content in question.translations.items():
        if len(content.options) != len(permutation):
            logger.debug(
                "Skipping %s options of question %s: %d options vs %d",
                lang,
                question.id,
                len(content.options),
                len(permutation),
            )
            continue
        content.options, _ = relabel_options(content.options, permutation)


def shuffle_question_options(
    question: Question,
    random_fn: RandomFn = random.random,
    permutation: Optional[Sequence[int]] = None,
) -> Optional[List[int]]:
    """
    1 問の選択肢をその場で並べ替える。

    - options / correct_answer / translations をまとめて更新する
    - 選択肢が 2 つ未満なら何もしない (None を返す)
    - 戻り値は実際に使った permutation
    """
    if not question.options or len(question.options) < 2:
        return None

    if permutation is None:
        perm = make_permutation(len(question.options), random_fn)
    else:
        perm = list(permutation)

    new_options, label_map = relabel_options(question.options, perm)
    question.options = new_options
    # 正解ラベルが見つからない場合は元のまま
    question.correct_answer = label_map.get(question.correct_answer, question.correct_answer)
    sync_translations(question, perm)
    return perm


def shuffle_options_in_place(
    questions: List[Question],
    random_fn: RandomFn = random.random,
) -> List[Question]:
    """全問題の選択肢を、問題ごとに別々の並べ替えでシャッフルする。"""
    for q in questions:
        shuffle_question_options(q, random_fn)
    return questions


# ----------------------------------------------------------------------
#  問題順のシャッフル
# ----------------------------------------------------------------------
def shuffle_questions(questions: Sequence[Question], seed: Seed) -> List[Question]:
    """
    シード付きで問題の順番を並べ替えた新しいリストを返す。
    シードが未指定または -1 のときは元の順番のまま。
    """
    result = list(questions)
    seed_num = normalize_seed(seed)
    if seed_num is None:
        return result
    return shuffle_array(result, mulberry32(seed_num))
