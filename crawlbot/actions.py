"""
Post-load page behaviors run against a session: screenshots, scrolling,
checkbox normalization and login form automation.
"""

import os

from crawlbot.core import MAX_SCROLL_SECONDS, SCROLL_DISTANCE, SCROLL_INTERVAL_MS, logger
from crawlbot.url_utils import screenshot_name

# Scrolls by `distance` every `interval` ms until the bottom of the page is
# reached or `maxSeconds` have elapsed.
SCROLL_SCRIPT = """
async ({distance, interval, maxSeconds}) => {
  await new Promise((resolve) => {
    let totalHeight = 0;
    const start = Date.now();
    const timer = setInterval(() => {
      try {
        const scrollHeight = document.body.scrollHeight;
        window.scrollBy(0, distance);
        totalHeight += distance;
        if (totalHeight >= scrollHeight || (Date.now() - start) / 1000 > maxSeconds) {
          clearInterval(timer);
          resolve();
        }
      } catch (err) {
        clearInterval(timer);
        resolve();
      }
    }, interval);
  });
}
"""

CHECK_ALL_SCRIPT = "checkboxes => checkboxes.forEach(checkbox => { checkbox.checked = true; })"


def screenshot_path(directory, url):
    return os.path.join(directory, f"{screenshot_name(url)}.jpeg")


def take_screenshot(session, directory, url):
    path = screenshot_path(directory, url)
    session.screenshot(path)
    logger.debug(f"[ACTIONS] screenshot {url} -> {path}")
    return path


def emulate_scrolling(session, max_seconds=MAX_SCROLL_SECONDS):
    # In-page loop stops at max_seconds; the call itself gets the per-call limit on top
    session.evaluate(SCROLL_SCRIPT, {
        "distance": SCROLL_DISTANCE,
        "interval": SCROLL_INTERVAL_MS,
        "maxSeconds": max_seconds,
    }, timeout=max_seconds + session.call_timeout)


def check_all_checkboxes(session):
    session.eval_all("input[type=checkbox]", CHECK_ALL_SCRIPT)


def find_form_config(form_configs, url):
    for form_config in form_configs:
        if form_config.matches(url):
            return form_config
    return None


def submit_form(session, form_config, wait_until, timeout_ms):
    """
    Write every configured field, click submit and wait for the navigation.
    Marks the session so the same page load never submits twice.
    """
    for selector, value in form_config.fields.items():
        session.set_value(selector, "" if value is None else value)
    session.form_submitted = True
    session.click_and_wait(form_config.submit_selector, wait_until=wait_until, timeout_ms=timeout_ms)
