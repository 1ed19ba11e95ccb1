"""感知模块：在页面上下文中执行的探测脚本"""

from typing import Dict, List, Optional

from .models import Coordinate, LoadingState

# 坐标处的元素信息；元素不在视口内时平滑滚动到中间
ELEMENT_AT_POINT_JS = """
(coord) => {
    const el = document.elementFromPoint(coord.x, coord.y);
    if (!el) return null;

    const rect = el.getBoundingClientRect();
    const isOffScreen = rect.bottom < 0 || rect.top > window.innerHeight ||
                        rect.right < 0 || rect.left > window.innerWidth;
    const tag = el.tagName;
    const isInput = tag === 'INPUT' || tag === 'TEXTAREA' || el.isContentEditable ||
                    el.hasAttribute('contenteditable');

    if (isOffScreen && coord.scroll) {
        el.scrollIntoView({ behavior: 'smooth', block: 'center' });
    }

    return {
        tagName: tag.toLowerCase(),
        id: el.id || null,
        className: typeof el.className === 'string' ? el.className : null,
        href: el.getAttribute('href'),
        isInput,
        isOffScreen,
    };
}
"""

# 坐标处元素若天然可聚焦则直接 focus；无元素时返回 null
FOCUS_AT_POINT_JS = """
(coord) => {
    const el = document.elementFromPoint(coord.x, coord.y);
    if (!el) return null;
    const tag = el.tagName.toLowerCase();
    const focusable = tag === 'input' || tag === 'textarea' || tag === 'select' ||
                      el.isContentEditable || el.hasAttribute('contenteditable');
    if (focusable) {
        el.focus();
        return true;
    }
    return false;
}
"""

HAS_FOCUS_JS = """
() => document.activeElement !== null &&
      document.activeElement !== document.body &&
      document.activeElement !== document.documentElement
"""

# 加载指示器启发式：
#   a) 配置的选择器中当前可见的元素；
#   b) <progress> / role=progressbar 的数值进度；
#   c) 类名像 loading/spin/progress 且正在执行 CSS 动画的元素。
LOADING_STATE_JS = """
(selectors) => {
    const isVisible = (el) => {
        const style = window.getComputedStyle(el);
        const rect = el.getBoundingClientRect();
        if (style.display === 'none') return false;
        if (style.visibility === 'hidden') return false;
        if (parseFloat(style.opacity) === 0) return false;
        if (rect.width <= 0 || rect.height <= 0) return false;
        return true;
    };

    const visible = [];
    for (const sel of selectors) {
        let nodes = [];
        try { nodes = document.querySelectorAll(sel); } catch (e) { continue; }
        for (const el of nodes) {
            if (isVisible(el)) visible.push(el);
        }
    }

    let progress = null;
    for (const el of visible) {
        if (el.tagName === 'PROGRESS' && el.max > 0 && el.hasAttribute('value')) {
            progress = Math.round((el.value / el.max) * 100);
            break;
        }
        if (el.getAttribute('role') === 'progressbar') {
            const now = parseFloat(el.getAttribute('aria-valuenow'));
            const min = parseFloat(el.getAttribute('aria-valuemin') || '0');
            const max = parseFloat(el.getAttribute('aria-valuemax') || '100');
            if (!isNaN(now) && max > min) {
                progress = Math.round(((now - min) / (max - min)) * 100);
                break;
            }
        }
    }

    let animated = false;
    if (visible.length === 0) {
        const candidates = document.querySelectorAll(
            '[class*="loading"], [class*="spin"], [class*="progress"], [class*="loader"]'
        );
        for (const el of candidates) {
            if (!isVisible(el)) continue;
            const style = window.getComputedStyle(el);
            if (style.animationName && style.animationName !== 'none' &&
                style.animationPlayState !== 'paused') {
                animated = true;
                break;
            }
        }
    }

    return { isLoading: visible.length > 0 || animated, progress };
}
"""

# 提交表单：原生 requestSubmit / submit 按钮点击 / 父级 form
SUBMIT_FORM_JS = """
(selector) => {
    const target = document.querySelector(selector);
    if (!target) return { submitted: false, reason: 'not_found' };

    const form = target.tagName === 'FORM' ? target : null;
    const button = target.querySelector(
        'button[type="submit"], input[type="submit"], button:not([type])'
    );

    if (form) {
        if (typeof form.requestSubmit === 'function') {
            form.requestSubmit();
        } else {
            form.submit();
        }
        return { submitted: true, method: 'native' };
    }
    if (button) {
        button.click();
        return { submitted: true, method: 'button' };
    }
    const parent = target.closest('form');
    if (parent) {
        if (typeof parent.requestSubmit === 'function') {
            parent.requestSubmit();
        } else {
            parent.submit();
        }
        return { submitted: true, method: 'parent-form' };
    }
    return { submitted: false, reason: 'no_submit_control' };
}
"""


def _point(coordinate: Coordinate, scroll: bool = False) -> Dict:
    return {"x": coordinate.x, "y": coordinate.y, "scroll": scroll}


async def element_at(page, coordinate: Coordinate, scroll: bool = False) -> Optional[Dict]:
    return await page.evaluate(ELEMENT_AT_POINT_JS, _point(coordinate, scroll))


async def focus_at(page, coordinate: Coordinate) -> Optional[bool]:
    """None 表示坐标处没有元素"""
    result = await page.evaluate(FOCUS_AT_POINT_JS, _point(coordinate))
    return None if result is None else bool(result)


async def has_focus(page) -> bool:
    return bool(await page.evaluate(HAS_FOCUS_JS))


async def loading_state(page, selectors: List[str]) -> LoadingState:
    result = await page.evaluate(LOADING_STATE_JS, list(selectors)) or {}
    progress = result.get("progress")
    return LoadingState(
        is_loading=bool(result.get("isLoading")),
        progress_percent=float(progress) if progress is not None else None,
    )


async def submit_form(page, selector: str) -> Dict:
    return await page.evaluate(SUBMIT_FORM_JS, selector) or {"submitted": False, "reason": "no_result"}
