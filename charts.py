import base64
import io
import textwrap

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from config import RATING_SCALE
from models import RATING_BUCKETS

MAX_RATING = 5


def ratings_bar_chart(averages, title, xlabel='Average Rating', ylabel='Staff (Subject)', dpi=100):
    """Render a horizontal bar chart of ``{label: average}`` and return PNG bytes."""
    labels = [textwrap.fill(str(label), width=15) for label in averages.keys()]
    values = list(averages.values())

    fig, ax = plt.subplots(figsize=(14, max(4, len(labels) * 0.6 + 2)))
    colors = plt.cm.viridis([value / MAX_RATING for value in values])
    bars = ax.barh(labels, values, color=colors, edgecolor='black')

    ax.set_xlabel(xlabel, fontsize=12, fontweight='bold')
    ax.set_ylabel(ylabel, fontsize=12, fontweight='bold')
    ax.set_title(f'{title}\n', fontsize=16, fontweight='bold', pad=20)

    ax.set_xlim(0, MAX_RATING)
    ax.set_xticks(range(0, MAX_RATING + 1))
    ax.xaxis.set_tick_params(labelsize=10)
    ax.yaxis.set_tick_params(labelsize=10)
    ax.grid(True, axis='x', linestyle='--', alpha=0.7)

    for bar in bars:
        width = bar.get_width()
        ax.text(width + 0.05, bar.get_y() + bar.get_height() / 2,
                f'{width:.1f}', va='center', ha='left', fontsize=10)

    return _to_png(fig, dpi)


def distribution_chart(distribution, title, dpi=100):
    """Render star-bucket counts (5 stars first) and return PNG bytes."""
    buckets = list(reversed(RATING_BUCKETS))
    labels = [f'{bucket} ★ {RATING_SCALE[bucket]}' for bucket in buckets]
    counts = [distribution.get(bucket, 0) for bucket in buckets]

    fig, ax = plt.subplots(figsize=(10, 5))
    colors = plt.cm.RdYlGn([bucket / MAX_RATING for bucket in buckets])
    bars = ax.bar(labels, counts, color=colors, edgecolor='black')

    ax.set_ylabel('Responses', fontsize=12, fontweight='bold')
    ax.set_title(f'{title}\n', fontsize=14, fontweight='bold')
    ax.grid(True, axis='y', linestyle='--', alpha=0.7)

    for bar in bars:
        height = bar.get_height()
        ax.text(bar.get_x() + bar.get_width() / 2, height,
                f'{int(height)}', va='bottom', ha='center', fontsize=10)

    return _to_png(fig, dpi)


def to_data_uri(png):
    """Encode PNG bytes for an <img src> attribute."""
    return 'data:image/png;base64,' + base64.b64encode(png).decode()


def _to_png(fig, dpi):
    fig.tight_layout()
    img = io.BytesIO()
    fig.savefig(img, format='png', bbox_inches='tight', dpi=dpi)
    plt.close(fig)
    return img.getvalue()
