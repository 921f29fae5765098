# --- services/session_manager.py ---

import logging
import random
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, case, func, select, update
from sqlalchemy.exc import IntegrityError

from ..core.config import settings
from ..core.errors import (
    BadRequestError, ChapterConflictError, NotFoundError, ServerError, SessionNotActiveError,
)
from ..database.db_utils import get_db
from ..models.database import (
    Chapter, StorySession, WalletTransaction, SESSION_ACTIVE, SESSION_ABANDONED, SESSION_FINISHED,
    SESSION_STATUSES, generate_uuid, utcnow,
)
from . import wallet_ledger
from .chapter_generator import ChapterGenerator, build_first_chapter_prompt, build_next_chapter_prompt
from .prompt_compositor import build_replacements, compose_prompt
from .settings_store import get_time_flavor, get_time_flavors, get_tone_style, get_tone_styles
from .story_catalog import get_story, increment_played

logger = logging.getLogger(__name__)

MAX_RATING_TEXT = 250


def session_to_dict(session: StorySession) -> Dict[str, Any]:
    return {
        "id": session.id,
        "userId": session.user_id,
        "storyId": session.story_id,
        "toneStyleId": session.tone_style_id,
        "timeFlavorId": session.time_flavor_id,
        "status": session.status,
        "currentChapter": session.current_chapter,
        "chaptersGenerated": session.chapters_generated,
        "rating": session.rating_stars,
        "ratingText": session.rating_text,
        "startedAt": session.started_at.isoformat() if session.started_at else None,
        "lastActivityAt": session.last_activity_at.isoformat() if session.last_activity_at else None,
        "finishedAt": session.finished_at.isoformat() if session.finished_at else None,
    }


def chapter_to_dict(chapter: Chapter) -> Dict[str, Any]:
    return {
        "id": chapter.id,
        "sessionId": chapter.session_id,
        "chapterIndex": chapter.chapter_index,
        "title": chapter.title,
        "content": chapter.content,
        "choices": chapter.choices,
        "openingBeat": chapter.opening_beat,
        "chosenOption": chapter.chosen_option,
        "createdAt": chapter.created_at.isoformat() if chapter.created_at else None,
    }


class SessionManager:
    """
    Owns the lifecycle of story sessions: start, advance, complete, abandon.

    Chapter 1 is paid for by ``start``; every later chapter is debited by
    ``advance`` before generation. Database work happens in short get_db()
    blocks on either side of the generator call, never across it.
    """

    def __init__(self, generator: ChapterGenerator = None, refund_on_failure: bool = None):
        self.generator = generator or ChapterGenerator()
        self.refund_on_failure = settings.refund_on_failure if refund_on_failure is None else refund_on_failure

    # --- lookups ---

    def _load_session(self, db, session_id: str, user_id: Optional[str] = None) -> StorySession:
        session = db.get(StorySession, session_id)
        # Someone else's session looks exactly like a missing one
        if session is None or (user_id is not None and session.user_id != user_id):
            raise NotFoundError(f"Session {session_id} not found")
        return session

    def get_session(self, session_id: str, user_id: Optional[str] = None) -> StorySession:
        with get_db() as db:
            return self._load_session(db, session_id, user_id)

    def get_chapters(self, session_id: str, user_id: Optional[str] = None) -> List[Chapter]:
        with get_db() as db:
            self._load_session(db, session_id, user_id)
            stmt = select(Chapter).where(Chapter.session_id == session_id).order_by(Chapter.chapter_index)
            return list(db.execute(stmt).scalars())

    def find_active_session(self, user_id: str, story_id: str, db=None) -> Optional[StorySession]:
        stmt = (
            select(StorySession)
            .where(StorySession.user_id == user_id, StorySession.story_id == story_id,
                   StorySession.status == SESSION_ACTIVE)
            .order_by(StorySession.started_at.desc())
            .limit(1)
        )
        if db is not None:
            return db.execute(stmt).scalar_one_or_none()
        with get_db() as db:
            return db.execute(stmt).scalar_one_or_none()

    def list_user_sessions(self, user_id: str, status: Optional[str] = None) -> List[StorySession]:
        return self.list_sessions(user_id=user_id, status=status, limit=100)[0]

    def list_sessions(self, user_id: Optional[str] = None, story_id: Optional[str] = None,
                      status: Optional[str] = None, limit: int = 50, offset: int = 0) -> Tuple[List[StorySession], int]:
        """Filtered session list, most recent activity first, with the total match count"""
        if status is not None and status not in SESSION_STATUSES:
            raise BadRequestError(f"Unknown session status: {status}", field="status")
        limit = max(1, min(limit, 100))
        offset = max(0, offset)
        filters = []
        if user_id is not None:
            filters.append(StorySession.user_id == user_id)
        if story_id is not None:
            filters.append(StorySession.story_id == story_id)
        if status is not None:
            filters.append(StorySession.status == status)
        with get_db() as db:
            total = db.execute(select(func.count(StorySession.id)).where(*filters)).scalar_one()
            stmt = (
                select(StorySession).where(*filters)
                .order_by(StorySession.last_activity_at.desc())
                .offset(offset).limit(limit)
            )
            return list(db.execute(stmt).scalars()), total

    def flavor_stats(self) -> Dict[str, List[Dict[str, Any]]]:
        """Session counts per tone style and per time flavor"""
        def _counts(db, column):
            rows = db.execute(
                select(
                    column,
                    func.count(StorySession.id),
                    func.sum(case((StorySession.status == SESSION_ACTIVE, 1), else_=0)),
                    func.sum(case((StorySession.status == SESSION_FINISHED, 1), else_=0)),
                ).group_by(column).order_by(func.count(StorySession.id).desc())
            ).all()
            return [
                {"id": flavor_id, "sessions": total, "active": int(active or 0), "finished": int(finished or 0)}
                for flavor_id, total, active, finished in rows
            ]

        with get_db() as db:
            return {
                "toneStyles": _counts(db, StorySession.tone_style_id),
                "timeFlavors": _counts(db, StorySession.time_flavor_id),
            }

    # --- lifecycle ---

    def _pick_flavor(self, db, label: str, field: str, requested: Optional[str], story_default: Optional[str],
                     lookup, catalog):
        """Requested id, else the story's default when still valid, else a random catalog entry"""
        if requested:
            option = lookup(requested, db)
            if option is None:
                raise BadRequestError(f"Invalid {label}: {requested}", field=field)
            return option
        if story_default:
            option = lookup(story_default, db)
            if option is not None:
                return option
            logger.warning(f"Story default {label} '{story_default}' is no longer in the catalog")
        options = catalog(db)
        if not options:
            raise ServerError(f"No {label}s available")
        return random.choice(options)

    def start(self, user_id: str, story_id: str, tone_style_id: Optional[str] = None,
              time_flavor_id: Optional[str] = None) -> Tuple[StorySession, bool]:
        """
        Start a play-through, or resume the user's active one for this story.

        Returns ``(session, resumed)``. A new session is created at chapter 0
        together with the debit for chapter 1 in one database transaction.
        An omitted flavor falls back to the story's default, then to a random
        catalog entry.
        """
        with get_db() as db:
            if tone_style_id and get_tone_style(tone_style_id, db) is None:
                raise BadRequestError(f"Invalid tone style: {tone_style_id}", field="toneStyleId")
            if time_flavor_id and get_time_flavor(time_flavor_id, db) is None:
                raise BadRequestError(f"Invalid time flavor: {time_flavor_id}", field="timeFlavorId")
            story = get_story(story_id, active_only=True, db=db)

            existing = self.find_active_session(user_id, story_id, db)
            if existing is not None:
                logger.info(f"Resuming session {existing.id} of user {user_id} for story '{story_id}'")
                return existing, True

            tone = self._pick_flavor(db, "tone style", "toneStyleId", tone_style_id, story.default_tone_style_id,
                                     get_tone_style, get_tone_styles)
            time = self._pick_flavor(db, "time flavor", "timeFlavorId", time_flavor_id, story.default_time_flavor_id,
                                     get_time_flavor, get_time_flavors)

            session = StorySession(
                id=generate_uuid(),
                user_id=user_id,
                story_id=story_id,
                tone_style_id=tone.option_id,
                time_flavor_id=time.option_id,
                story_prompt=compose_prompt(story.story_prompt, build_replacements(story, tone, time)),
                status=SESSION_ACTIVE,
                current_chapter=0,
            )
            db.add(session)
            db.flush()
            wallet_ledger.debit(user_id, story.credits_per_chapter, source="play", note="chapter 1",
                                story_id=story_id, session_id=session.id, chapter=1, db=db)
            increment_played(story_id, db)
            db.commit()
            logger.info(f"Started session {session.id} for user {user_id} on story '{story_id}' "
                        f"(tone={tone.option_id}, time={time.option_id})")
            return session, False

    def _prepare_chapter(self, user_id: str, session_id: str, choice: Optional[str], choice_index: Optional[int],
                         expected_chapter: Optional[int]) -> Dict[str, Any]:
        """Validate the request, charge for the chapter and build its prompts"""
        with get_db() as db:
            session = self._load_session(db, session_id, user_id)
            if session.status != SESSION_ACTIVE:
                logger.warning(f"Advance refused: session {session_id} is {session.status}")
                raise SessionNotActiveError(session_id, session.status)
            current = session.current_chapter
            if expected_chapter is not None and expected_chapter != current:
                logger.warning(f"Advance refused: session {session_id} at {current}, client expected {expected_chapter}")
                raise ChapterConflictError(expected=expected_chapter, actual=current)

            story = session.story
            next_index = current + 1
            previous = None
            if current > 0:
                previous = db.execute(
                    select(Chapter).where(Chapter.session_id == session_id, Chapter.chapter_index == current)
                ).scalar_one_or_none()

            chosen_option = None
            if choice_index is not None:
                if previous is None or not 0 <= choice_index < len(previous.choices):
                    raise BadRequestError(f"Choice index {choice_index} is out of range", field="choiceIndex")
                chosen_option = previous.choices[choice_index]
            elif choice and choice.strip() and previous is not None:
                chosen_option = choice.strip()

            opening_beat = None
            if previous is None:
                opening_beat = story.opening_beats[0] if story.opening_beats else None
                user_prompt = build_first_chapter_prompt(story.title, story.author_name, story.description,
                                                         opening_beat)
            else:
                user_prompt = build_next_chapter_prompt(story.title, previous.title, previous.content,
                                                        chosen_option, next_index)

            debit_tx = None
            if next_index > 1:
                debit_tx = wallet_ledger.debit(user_id, story.credits_per_chapter, source="play",
                                               note=f"chapter {next_index}", story_id=story.id,
                                               session_id=session_id, chapter=next_index, db=db)
                db.commit()

            return {
                "current": current,
                "next_index": next_index,
                "story_title": story.title,
                "estimated_chapters": story.estimated_chapter_count,
                "system_prompt": session.story_prompt,
                "user_prompt": user_prompt,
                "opening_beat": opening_beat,
                "chosen_option": chosen_option,
                "debit_tx": debit_tx,
            }

    def _persist_chapter(self, user_id: str, session_id: str, plan: Dict[str, Any], generated) -> Tuple[Chapter, int]:
        """Write the chapter and move the session forward by one, or fail if someone else did first"""
        current = plan["current"]
        # Reaching the estimated length ends the play-through
        last = plan["next_index"] >= plan["estimated_chapters"]
        with get_db() as db:
            now = utcnow()
            values = dict(current_chapter=current + 1,
                          chapters_generated=StorySession.chapters_generated + 1,
                          last_activity_at=now)
            if last:
                values.update(status=SESSION_FINISHED, finished_at=now)
            result = db.execute(
                update(StorySession)
                .where(and_(StorySession.id == session_id,
                            StorySession.current_chapter == current,
                            StorySession.status == SESSION_ACTIVE))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                session = self._load_session(db, session_id)
                if session.status != SESSION_ACTIVE:
                    raise SessionNotActiveError(session_id, session.status)
                logger.warning(f"Lost chapter race on session {session_id}: expected {current}, "
                               f"found {session.current_chapter}")
                raise ChapterConflictError(expected=current, actual=session.current_chapter)

            chapter = Chapter(
                session_id=session_id,
                chapter_index=plan["next_index"],
                prompt_used=plan["user_prompt"],
                opening_beat=plan["opening_beat"],
                chosen_option=plan["chosen_option"],
                title=generated.title,
                content=generated.content,
                choices=list(generated.choices),
                created_at=now,
            )
            db.add(chapter)
            try:
                db.flush()
            except IntegrityError:
                db.rollback()
                raise ChapterConflictError(expected=current, actual=current + 1)
            db.commit()
            balance = wallet_ledger.get_balance(user_id, db=db)
            logger.info(f"Session {session_id} advanced to chapter {plan['next_index']} "
                        f"(provider={generated.provider}, balance={balance})")
            if last:
                logger.info(f"Session {session_id} finished at its estimated length of {plan['estimated_chapters']} chapters")
            return chapter, balance

    def _release_debit(self, user_id: str, debit_tx: Optional[WalletTransaction]):
        if debit_tx is None:
            return
        if not self.refund_on_failure:
            logger.info(f"Keeping debit {debit_tx.id} of user {user_id} (charge on attempt)")
            return
        wallet_ledger.refund(user_id, debit_tx.amount, refund_of=debit_tx.id, story_id=debit_tx.story_id,
                             session_id=debit_tx.session_id, chapter=debit_tx.chapter)
        logger.info(f"Refunded debit {debit_tx.id} of user {user_id} after failed chapter {debit_tx.chapter}")

    async def advance(self, user_id: str, session_id: str, choice: Optional[str] = None,
                      choice_index: Optional[int] = None, expected_chapter: Optional[int] = None) -> Tuple[Chapter, int]:
        """
        Generate and store the next chapter of an active session.

        Returns ``(chapter, wallet_balance)``. When generation fails or a
        concurrent request already produced this chapter, the debit is either
        refunded or kept depending on the charge policy, and nothing is stored.
        """
        plan = self._prepare_chapter(user_id, session_id, choice, choice_index, expected_chapter)
        try:
            generated = await self.generator.generate(
                plan["system_prompt"],
                plan["user_prompt"],
                plan["next_index"],
                plan["story_title"],
                chosen_option=plan["chosen_option"],
            )
            return self._persist_chapter(user_id, session_id, plan, generated)
        except Exception:
            logger.warning(f"Chapter {plan['next_index']} of session {session_id} was not produced")
            self._release_debit(user_id, plan["debit_tx"])
            raise

    async def generate_first_chapter(self, user_id: str, session_id: str) -> Tuple[Chapter, int]:
        session = self.get_session(session_id, user_id)
        if session.status != SESSION_ACTIVE:
            raise SessionNotActiveError(session_id, session.status)
        if session.current_chapter != 0:
            raise ChapterConflictError(expected=0, actual=session.current_chapter)
        return await self.advance(user_id, session_id, expected_chapter=0)

    def _finish(self, user_id: str, session_id: str, status: str, **values: Any) -> StorySession:
        with get_db() as db:
            session = self._load_session(db, session_id, user_id)
            if session.status != SESSION_ACTIVE:
                logger.warning(f"Cannot mark session {session_id} {status}: it is {session.status}")
                raise SessionNotActiveError(session_id, session.status)
            now = utcnow()
            result = db.execute(
                update(StorySession)
                .where(StorySession.id == session_id, StorySession.status == SESSION_ACTIVE)
                .values(status=status, finished_at=now, last_activity_at=now, **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                session = self._load_session(db, session_id)
                raise SessionNotActiveError(session_id, session.status)
            db.commit()
            db.refresh(session)
            logger.info(f"Session {session_id} is now {status}")
            return session

    def complete(self, user_id: str, session_id: str, rating: Optional[int] = None,
                 text: Optional[str] = None) -> StorySession:
        if rating is not None and (isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5):
            raise BadRequestError("Rating must be an integer from 1 to 5", field="rating")
        text = (text or "").strip() or None
        if text is not None and len(text) > MAX_RATING_TEXT:
            raise BadRequestError(f"Text must be at most {MAX_RATING_TEXT} characters", field="text")
        return self._finish(user_id, session_id, SESSION_FINISHED, rating_stars=rating, rating_text=text)

    def abandon(self, user_id: str, session_id: str) -> StorySession:
        return self._finish(user_id, session_id, SESSION_ABANDONED)

# --- END OF FILE services/session_manager.py ---
