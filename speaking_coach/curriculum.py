"""
カリキュラムデータ（ユニットごとの問題）
"""
from speaking_coach.models.schemas import Prompt, Unit

UNIT_COUNT: int = 40

# ユニット1専用の問題
UNIT_1_PROMPTS: tuple[Prompt, ...] = (
    Prompt(id=1, text="How old are you?", hint="I am..."),
    Prompt(id=2, text="What color is the house?", hint="The house is..."),
    Prompt(id=3, text="What is your mom's name?", hint="My mom's name is..."),
    Prompt(id=4, text="What is your dad's name?", hint="My dad's name is..."),
)

# 結果画面で使うごほうびステッカー
POSITIVE_STICKERS: tuple[str, ...] = ("🌟", "🏆", "🦄", "🚀", "🌈", "🎈")


def _generic_prompts(unit_id: int) -> tuple[Prompt, ...]:
    """ユニット2以降のプレースホルダー問題を生成"""
    return (
        Prompt(id=1, text=f"Unit {unit_id}: What is your favorite animal?", hint="My favorite animal is..."),
        Prompt(id=2, text=f"Unit {unit_id}: What do you like to eat?", hint="I like to eat..."),
        Prompt(id=3, text=f"Unit {unit_id}: Can you swim?", hint="Yes, I can / No, I cannot"),
    )


def _build_units() -> dict[int, Unit]:
    units: dict[int, Unit] = {1: Unit(id=1, title="Unit 1", prompts=UNIT_1_PROMPTS)}
    for unit_id in range(2, UNIT_COUNT + 1):
        units[unit_id] = Unit(id=unit_id, title=f"Unit {unit_id}", prompts=_generic_prompts(unit_id))
    return units


# 起動時に一度だけ構築し、以後は読み取り専用
UNITS: dict[int, Unit] = _build_units()


def get_unit(unit_id: int, units: dict[int, Unit] | None = None) -> Unit | None:
    """
    ユニットIDからユニットを取得

    Args:
        unit_id: ユニットID
        units: 検索対象（省略時は組み込みカリキュラム）

    Returns:
        ユニット、存在しない場合はNone
    """
    return (units if units is not None else UNITS).get(unit_id)
