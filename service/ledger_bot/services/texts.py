"""
Fixed report labels for the two supported group languages.
"""

from ledger_bot.models import Language

TEXTS: dict[Language, dict[str, str]] = {
    Language.ZH: {
        "language_switch": "切换泰语",
        "deposits": "入款",
        "withdrawals": "下发",
        "count": "笔",
        "total_deposits": "总入款:",
        "income_fee_rate": "入款费率:",
        "outgoing_fee_rate": "下发费率:",
        "usdt_rate": "USDT汇率:",
        "should_pay": "应下发:",
        "total_paid": "总下发:",
        "balance": "余:",
        "settlement_title": "📊 日结算报告",
        "settled_count": "本次结算",
        "nothing_to_settle": "今日没有待结算的账单",
        "window_since": "账期开始:",
    },
    Language.TH: {
        "language_switch": "切换中文",
        "deposits": "ฝาก",
        "withdrawals": "ถอน",
        "count": "รายการ",
        "total_deposits": "ฝากทั้งหมด:",
        "income_fee_rate": "อัตราค่าธรรมเนียมฝาก:",
        "outgoing_fee_rate": "อัตราค่าธรรมเนียมถอน:",
        "usdt_rate": "อัตรา USDT:",
        "should_pay": "ควรจ่าย:",
        "total_paid": "ถอนทั้งหมด:",
        "balance": "คงเหลือ:",
        "settlement_title": "📊 รายงานสรุปประจำวัน",
        "settled_count": "สรุปแล้ว",
        "nothing_to_settle": "วันนี้ไม่มีรายการที่ต้องสรุป",
        "window_since": "เริ่มรอบบัญชี:",
    },
}


def text(language: Language, key: str) -> str:
    return TEXTS.get(language, TEXTS[Language.ZH])[key]
