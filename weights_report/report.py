import json
from datetime import timedelta
import pandas as pd

from weights_report.pipeline import RISK_HIGH

TABLE_COLUMNS = ['UID', 'Hotkey', 'Pruning Score', 'Pruning Risk', 'Incentive', 'Alpha/Epoch', 'Alpha/Day', 'USD/Day']
CSV_COLUMNS = ['UID', 'HOTKEY', 'PRUNING_SCORE', 'PRUNING_RISK', 'INCENTIVE',
               'ALPHA_PER_EPOCH', 'ALPHA_PER_DAY', 'TAO_PER_DAY', 'USD_PER_DAY']


def prettify_time(seconds):
    """Convert seconds to a pretty time format"""
    delta = timedelta(seconds=max(seconds, 0))
    days = delta.days
    hours, remainder = divmod(delta.seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    time_str = f"{days:02}d:{hours:02}h:{minutes:02}m"
    return time_str


def format_risk(risk):
    return '⚠️  High' if risk == RISK_HIGH else risk


def table_frame(rows):
    """DataFrame of display-formatted rows, one per hotkey"""
    data = [{
        'UID': r.uid,
        'Hotkey': r.hotkey,
        'Pruning Score': r.pruning_score,
        'Pruning Risk': format_risk(r.pruning_risk),
        'Incentive': r.incentive,
        'Alpha/Epoch': f"{r.alpha_per_epoch:.4f}",
        'Alpha/Day': int(r.alpha_per_day),
        'USD/Day': f"${r.usd_per_day:.2f}",
    } for r in rows]
    return pd.DataFrame(data, columns=TABLE_COLUMNS)


def render_table(rows):
    return table_frame(rows).to_string(index=False)


def render_summary(summary):
    lines = [
        f"TAO price: ${summary.tao_price:.2f}",
        f"alphaPrice = {summary.alpha_price:.6f}",
        f"Blocks since last epoch: {summary.blocks_since_last_step}",
        f"Next epoch: {summary.next_epoch_at.strftime('%Y-%m-%d %H:%M:%S')} "
        f"(in {prettify_time(summary.seconds_to_next_epoch)})",
    ]
    return '\n'.join(lines)


def render_totals(totals):
    lines = [
        "------",
        f"Total USD daily:    ${totals.total_usd_daily:.2f}",
        f"Total TAO daily:     {totals.total_tao_daily:.2f}",
        f"Total Alpha daily:   {totals.total_alpha_daily:.2f}",
    ]
    return '\n'.join(lines)


def render_report(report):
    return '\n'.join([
        render_summary(report.summary),
        "",
        render_table(report.rows),
        "",
        render_totals(report.totals),
    ])


def render_csv(rows):
    """Unformatted rows as CSV"""
    data = [[r.uid, r.hotkey, r.pruning_score, r.pruning_risk, r.incentive,
             r.alpha_per_epoch, r.alpha_per_day, r.tao_per_day, r.usd_per_day] for r in rows]
    return pd.DataFrame(data, columns=CSV_COLUMNS).to_csv(index=False)


def render_json(report):
    return json.dumps(report.to_dict(), indent=4)
