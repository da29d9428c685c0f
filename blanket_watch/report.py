"""Excel export of tonight's forecast window and recommendation."""

import os
from datetime import datetime
from typing import Optional

import pandas as pd
from openpyxl.utils import get_column_letter

from blanket_watch.log_util import app_logger
from blanket_watch.models import Dataset, Metrics
from blanket_watch.rules import pick_recommendation

logger = app_logger(__name__)


def _summary_frame(data: Dataset, metrics: Metrics, window_label: str, timezone: str) -> pd.DataFrame:
    pick = pick_recommendation(data, metrics)
    if pick.kind == "none":
        combo_name, blankets, source = "", "", "No rule matched"
    elif pick.combo is None:
        combo_name, blankets, source = "(missing combo)", "", f"Rule: {pick.rule.name or 'Rule'}"
    else:
        combo_name = pick.combo.name
        blankets = ", ".join(data.blanket_name(bid) for bid in pick.combo.blanket_ids)
        source = "Default combo" if pick.kind == "default" else f"Rule: {pick.rule.name or 'Rule'}"

    return pd.DataFrame([{
        "Window": window_label,
        "Timezone": timezone,
        "Min Temperature (°F)": metrics.min_temp_f,
        "Min Feels Like (°F)": metrics.min_feels_f,
        "Max Precipitation (%)": metrics.max_precip_prob,
        "Max Wind Speed (mph)": metrics.max_wind_mph,
        "Wet Risk": metrics.wet_risk,
        "Recommendation": combo_name,
        "Blankets": blankets,
        "Source": source,
    }])


def _rules_frame(data: Dataset) -> pd.DataFrame:
    rows = []
    for idx, rule in enumerate(data.rules, 1):
        combo = data.combo(rule.combo_id)
        rows.append({
            "Order": idx,
            "Rule": (rule.name or "").strip() or f"Rule {idx}",
            "Conditions": " AND ".join(c.to_text() for c in rule.conditions) or "(always matches)",
            "Combo": combo.name if combo else "(missing combo)",
        })
    return pd.DataFrame(rows, columns=["Order", "Rule", "Conditions", "Combo"])


def save_excel_report(
    data: Dataset,
    metrics: Metrics,
    window_df: Optional[pd.DataFrame],
    window_label: str = "",
    timezone: str = "",
    reports_dir: Optional[str] = None,
) -> str:
    """
    Write a workbook with the hourly window, the summary and the rules.

    Args:
        data (Dataset): Rules, combos and blankets
        metrics (Metrics): Tonight's metrics
        window_df (pd.DataFrame): Hourly rows inside the window (may be None
            when only a cached snapshot is available)
        window_label (str): Window description for the summary sheet
        timezone (str): Timezone the forecast was requested in
        reports_dir (str): Output folder, defaults to ./reports

    Returns:
        str: Path of the written workbook
    """
    reports_dir = reports_dir or os.path.join(os.getcwd(), "reports")
    os.makedirs(reports_dir, exist_ok=True)
    xlsx_path = os.path.join(
        reports_dir, f"Blanket_Watch_Report_{datetime.now().strftime('%Y%m%d_%H%M')}.xlsx"
    )

    detailed = None
    if window_df is not None and not window_df.empty:
        detailed = window_df.copy()
        if detailed["Time"].dt.tz is not None:
            detailed["Time"] = detailed["Time"].dt.tz_localize(None)
        detailed.insert(0, "Date", detailed["Time"].dt.strftime("%Y-%m-%d"))
        detailed.insert(1, "Time of Day", detailed["Time"].dt.strftime("%I:%M %p"))
        detailed = detailed.drop(columns=["Time"])

    with pd.ExcelWriter(xlsx_path, engine="openpyxl") as writer:
        _summary_frame(data, metrics, window_label, timezone).to_excel(writer, index=False, sheet_name="Tonight")
        if detailed is not None:
            detailed.to_excel(writer, index=False, sheet_name="Hourly Window")
        _rules_frame(data).to_excel(writer, index=False, sheet_name="Rules")

        # Auto-adjust column widths
        for worksheet in writer.sheets.values():
            for idx, col in enumerate(worksheet.columns, 1):
                max_length = max((len(str(cell.value)) for cell in col if cell.value is not None), default=0)
                worksheet.column_dimensions[get_column_letter(idx)].width = min(max_length + 2, 50)

    logger.info("Excel report saved: %s", xlsx_path)
    return xlsx_path
